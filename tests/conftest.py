import heapq
import itertools
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import pytest

from watchstreak.aggregator import DailyAggregator
from watchstreak.completion import CompletionDetector
from watchstreak.controller import PlaybackController
from watchstreak.domain import MediaItem, MediaKind, TransportState
from watchstreak.exceptions import TransportError
from watchstreak.interfaces import IMediaTransport, IScheduler, ITimerHandle
from watchstreak.listeners import ListenerRegistry
from watchstreak.recorder import SessionRecorder
from watchstreak.repository import JsonProgressStore
from watchstreak.streak import StreakEvaluator
from watchstreak.transport import TransportAdapter

START = datetime(2026, 3, 10, 10, 0, 0)


class FakeHandle(ITimerHandle):
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler(IScheduler):
    """Deterministic clock; timers only fire inside advance()."""

    def __init__(self, start: datetime = START):
        self.start = start
        self.elapsed = 0.0
        self._timers = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def call_later(self, delay: float, callback: Callable[[], None]) -> ITimerHandle:
        handle = FakeHandle()
        heapq.heappush(self._timers, (self.elapsed + max(0.0, delay), next(self._seq), callback, handle))
        return handle

    def call_soon(self, callback: Callable[[], None]) -> ITimerHandle:
        return self.call_later(0.0, callback)

    def advance(self, seconds: float) -> None:
        target = self.elapsed + seconds
        while self._timers and self._timers[0][0] <= target:
            due, _, callback, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self.elapsed = due
            callback()
        self.elapsed = target

    def run_pending(self) -> None:
        self.advance(0)

    def travel_to(self, moment: datetime) -> None:
        """Moves the clock without firing timers."""
        self.start = moment - timedelta(seconds=self.elapsed)

    @property
    def pending_timers(self) -> int:
        return sum(1 for timer in self._timers if not timer[3].cancelled)


class FakeTransport(IMediaTransport):
    """
    In-memory transport. play() and pause() report their state synchronously
    and the position follows the scheduler clock while playing.
    """

    def __init__(self, scheduler: FakeScheduler, fail_sources=()):
        self.scheduler = scheduler
        self.fail_sources = set(fail_sources)
        self.calls: List[tuple] = []
        self.source: Optional[str] = None
        self.duration = 0.0
        self.rate = 1.0
        self.volume = 1.0
        self.muted = False
        self._state: Optional[TransportState] = None
        self._base_position = 0.0
        self._playing_since = 0.0
        self._listeners: ListenerRegistry[TransportState] = ListenerRegistry()

    def emit(self, state: TransportState) -> None:
        self._freeze()
        self._state = state
        self._playing_since = self.scheduler.elapsed
        self._listeners.notify(state)

    def _freeze(self) -> None:
        self._base_position = self.get_position()
        self._playing_since = self.scheduler.elapsed

    def load(self, source: str, start_at: float = 0.0) -> None:
        self.calls.append(("load", source, start_at))
        if source in self.fail_sources:
            raise TransportError(f"cannot open {source}", source)
        self.source = source
        self._state = TransportState.BUFFERING
        self._base_position = start_at
        self._playing_since = self.scheduler.elapsed

    def play(self) -> None:
        self.calls.append(("play",))
        if self.source is not None:
            self.emit(TransportState.PLAYING)

    def pause(self) -> None:
        self.calls.append(("pause",))
        if self.source is not None:
            self.emit(TransportState.PAUSED)

    def stop(self) -> None:
        self.calls.append(("stop",))
        self.source = None
        self._state = None

    def seek(self, seconds: float) -> None:
        self.calls.append(("seek", seconds))
        self._base_position = seconds
        self._playing_since = self.scheduler.elapsed

    def get_position(self) -> float:
        if self._state == TransportState.PLAYING:
            return self._base_position + (self.scheduler.elapsed - self._playing_since) * self.rate
        return self._base_position

    def get_duration(self) -> float:
        return self.duration

    def get_state(self) -> Optional[TransportState]:
        return self._state

    def get_rate(self) -> float:
        return self.rate

    def set_rate(self, rate: float) -> None:
        self._freeze()
        self.rate = rate

    def get_volume(self) -> float:
        return self.volume

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def set_muted(self, muted: bool) -> None:
        self.muted = muted

    def on_state_change(self, callback):
        return self._listeners.add(callback)

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


def make_item(media_id: str = "ep1", duration: float = 600, kind: MediaKind = MediaKind.VIDEO,
              title: Optional[str] = None) -> MediaItem:
    return MediaItem(kind=kind, id=media_id, title=title or media_id.upper(),
                     duration_seconds=duration, source=f"/media/{media_id}.mkv")


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def store(tmp_path, scheduler) -> JsonProgressStore:
    return JsonProgressStore(tmp_path / "progress.json", clock=scheduler.now)


@pytest.fixture
def video_transport(scheduler) -> FakeTransport:
    return FakeTransport(scheduler)


@pytest.fixture
def audio_transport(scheduler) -> FakeTransport:
    return FakeTransport(scheduler)


@pytest.fixture
def transport(video_transport, audio_transport) -> TransportAdapter:
    return TransportAdapter({MediaKind.VIDEO: video_transport, MediaKind.AUDIO: audio_transport})


@pytest.fixture
def recorder(store, scheduler) -> SessionRecorder:
    return SessionRecorder(store, scheduler)


@pytest.fixture
def completion(store) -> CompletionDetector:
    return CompletionDetector(store)


@pytest.fixture
def streak(store, scheduler) -> StreakEvaluator:
    return StreakEvaluator(store, scheduler)


@pytest.fixture
def aggregator(store, scheduler, streak) -> DailyAggregator:
    aggregator = DailyAggregator(store, scheduler, streak)
    aggregator.start()
    return aggregator


@pytest.fixture
def controller(transport, store, scheduler, recorder, completion, aggregator) -> PlaybackController:
    return PlaybackController(transport, store, scheduler, recorder, completion, aggregator)
