import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ListenerRegistry(Generic[T]):
    """
    A list of callbacks with removal tokens.

    Listeners are called synchronously in registration order. A listener
    that raises is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._listeners: List[Callable[[T], None]] = []

    def add(self, listener: Callable[[T], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Listener %r failed", listener)

    def __len__(self) -> int:
        return len(self._listeners)
