from abc import ABC, abstractmethod
from contextlib import nullcontext
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from watchstreak.domain import (
    ItemProgress,
    MediaKind,
    Session,
    TransportState,
    UserAggregate,
)

StateCallback = Callable[[TransportState], None]
Unsubscribe = Callable[[], None]


class IMediaTransport(ABC):
    """Abstract Base Class for media player transports."""

    @abstractmethod
    def load(self, source: str, start_at: float = 0.0) -> None:
        """
        Loads a media source and prepares it for playback.

        Readiness is reported asynchronously through the state-change callback.

        Args:
            source (str): Path or URL of the media.
            start_at (float): The time in seconds to start playback from.

        Raises:
            TransportError: If the backend cannot be started.
        """

    @abstractmethod
    def play(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stops playback and releases the loaded media."""

    @abstractmethod
    def seek(self, seconds: float) -> None:
        pass

    @abstractmethod
    def get_position(self) -> float:
        pass

    @abstractmethod
    def get_duration(self) -> float:
        pass

    @abstractmethod
    def get_state(self) -> Optional[TransportState]:
        """Returns the last reported state, or None before anything was loaded."""

    @abstractmethod
    def get_rate(self) -> float:
        pass

    @abstractmethod
    def set_rate(self, rate: float) -> None:
        pass

    @abstractmethod
    def get_volume(self) -> float:
        pass

    @abstractmethod
    def set_volume(self, volume: float) -> None:
        pass

    @abstractmethod
    def set_muted(self, muted: bool) -> None:
        pass

    @abstractmethod
    def on_state_change(self, callback: StateCallback) -> Unsubscribe:
        """
        Registers a callback for transport state changes.

        Returns:
            Unsubscribe: A function removing the callback again.
        """


class IProgressStore(ABC):
    """Abstract Base Class for durable progress persistence."""

    @abstractmethod
    def create_session(self, media_id: str, media_kind: MediaKind, source: str) -> Session:
        pass

    @abstractmethod
    def find_open_session(self, media_id: str) -> Optional[Session]:
        """
        Finds the open (not yet ended) session for a media item.

        Returns:
            Optional[Session]: The newest open session, or None.
        """

    @abstractmethod
    def list_open_sessions(self) -> List[Session]:
        """Returns every session of this user scope that was never closed."""

    def batch(self):
        """
        Returns a context manager grouping several writes; the default
        writes each one as it happens.
        """
        return nullcontext(self)

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[Session]:
        pass

    @abstractmethod
    def update_session(self, session_id: str, patch: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def close_session(self, session_id: str, final_seconds: int) -> None:
        pass

    @abstractmethod
    def sum_session_seconds(self, kind: Optional[MediaKind], started_after: datetime,
                            started_before: datetime) -> int:
        """
        Sums tracked seconds of closed sessions started in a time window.

        Args:
            kind (Optional[MediaKind]): Restrict to one media kind, or None for all.
            started_after (datetime): Inclusive lower bound on started_at.
            started_before (datetime): Exclusive upper bound on started_at.

        Returns:
            int: Total seconds.
        """

    @abstractmethod
    def get_item_progress(self, media_id: str) -> ItemProgress:
        pass

    @abstractmethod
    def set_item_progress(self, media_id: str, patch: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def get_user_aggregate(self) -> UserAggregate:
        pass

    @abstractmethod
    def update_user_aggregate(self, patch: Dict[str, Any]) -> None:
        pass


class ITimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        pass


class IScheduler(ABC):
    """Abstract Base Class for the clock and timers driving the engine."""

    @abstractmethod
    def now(self) -> datetime:
        """Returns the current local time."""

    def today(self) -> date:
        return self.now().date()

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> ITimerHandle:
        pass

    @abstractmethod
    def call_soon(self, callback: Callable[[], None]) -> ITimerHandle:
        pass
