import asyncio
import atexit
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from watchstreak.exceptions import TransportError
from watchstreak.services import TrackingService, create_service

logger = logging.getLogger(__name__)


class EngineHost:
    """
    Runs the tracking engine on its own event loop for a synchronous UI.

    The engine is single-threaded: every call made through call() is executed
    on the loop thread and its result handed back to the caller.
    """

    def __init__(self, settings: Dict[str, Any], timeout: float = 10.0):
        self.timeout = timeout
        self.errors: List[str] = []
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="watchstreak-engine", daemon=True)
        self._thread.start()
        self.service: TrackingService = self.call(create_service, settings, self.loop)
        self.call(self.service.start)
        self.call(self.service.controller.subscribe_errors, self._on_error)
        # Interpreter exit (Ctrl-C included) still closes the open session and flushes totals
        atexit.register(self.close)

    def _on_error(self, error: TransportError) -> None:
        # Read and cleared by the UI thread
        self.errors.append(str(error))

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def call(self, fn: Callable[..., Any], *args: Any, timeout: Optional[float] = None) -> Any:
        """Runs fn(*args) on the engine loop and returns its result."""
        async def invoke():
            return fn(*args)

        future = asyncio.run_coroutine_threadsafe(invoke(), self.loop)
        return future.result(timeout if timeout is not None else self.timeout)

    def close(self) -> None:
        atexit.unregister(self.close)
        if not self.loop.is_running():
            return
        try:
            self.call(self.service.shutdown)
        except Exception:
            logger.exception("Engine shutdown failed")
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=self.timeout)
