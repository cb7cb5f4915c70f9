import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from watchstreak.interfaces import IScheduler, ITimerHandle

logger = logging.getLogger(__name__)


def _run_guarded(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        logger.exception("Scheduled callback %r failed", callback)


class _LoopHandle(ITimerHandle):
    def __init__(self, handle: asyncio.Handle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()


class AsyncioScheduler(IScheduler):
    """Scheduler backed by an asyncio event loop and the local wall clock."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_running_loop()

    def now(self) -> datetime:
        return datetime.now()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ITimerHandle:
        return _LoopHandle(self.loop.call_later(max(0.0, delay), _run_guarded, callback))

    def call_soon(self, callback: Callable[[], None]) -> ITimerHandle:
        return _LoopHandle(self.loop.call_soon(_run_guarded, callback))


class TickTimer:
    """
    A single repeating timer.

    start_ticking() always clears the previous timer before installing the
    new one, so two tick loops never overlap.
    """

    def __init__(self, scheduler: IScheduler):
        self.scheduler = scheduler
        self._handle: Optional[ITimerHandle] = None
        self._generation = 0
        self._interval = 0.0
        self._on_tick: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start_ticking(self, interval: float, on_tick: Callable[[], None]) -> None:
        self.stop_ticking()
        self._interval = interval
        self._on_tick = on_tick
        self._arm(self._generation)

    def stop_ticking(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._on_tick = None

    def _arm(self, generation: int) -> None:
        self._handle = self.scheduler.call_later(self._interval, lambda: self._fire(generation))

    def _fire(self, generation: int) -> None:
        # A handle cancelled too late may still fire once
        if generation != self._generation or self._on_tick is None:
            return
        on_tick = self._on_tick
        self._arm(generation)
        try:
            on_tick()
        except Exception:
            logger.exception("Tick handler failed")


class Debouncer:
    """
    Coalesces rapid trigger() calls into one callback run.

    The callback runs `delay` seconds after the first trigger of a burst, so
    a steady stream of triggers still produces a write every `delay` seconds.
    """

    def __init__(self, scheduler: IScheduler, delay: float, callback: Callable[[], None]):
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self._handle: Optional[ITimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self._handle is None:
            self._handle = self.scheduler.call_later(self.delay, self._fire)

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.callback()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self.callback()
