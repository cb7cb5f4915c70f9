class WatchstreakError(Exception):
    """Base class for errors raised by the tracking engine."""


class TransportError(WatchstreakError):
    """A media transport failed to load or play an item."""

    def __init__(self, message: str, source: str = ""):
        super().__init__(message)
        self.source = source


class PersistenceError(WatchstreakError):
    """The progress store could not read or write its data."""
