"""Playback Controller: the play queue, the current item and the tick loop."""

import logging
import math
from typing import Callable, List, Optional

from watchstreak import config
from watchstreak.aggregator import DailyAggregator
from watchstreak.completion import CompletionDetector
from watchstreak.domain import MediaItem, MediaKind, PlaybackStatus, Session, TransportState
from watchstreak.exceptions import PersistenceError, TransportError
from watchstreak.interfaces import IProgressStore, IScheduler
from watchstreak.listeners import ListenerRegistry
from watchstreak.recorder import SessionRecorder
from watchstreak.scheduler import TickTimer
from watchstreak.transport import TransportAdapter

logger = logging.getLogger(__name__)


def _finite(value) -> Optional[float]:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def resume_position(duration: float, last_position: float) -> float:
    """
    Where to resume an item from its stored position.

    A position within the restart window of the end starts the item over.
    With an unknown duration the stored position is used as is.
    """
    position = _finite(last_position)
    if position is None or position < 0:
        return 0.0
    duration = _finite(duration) or 0.0
    if duration > 0 and position >= duration - config.RESUME_RESTART_WINDOW_SECONDS:
        return 0.0
    return position


class PlaybackController:
    """
    Owns the queue and the current item, issues transport commands and fans
    each tick out to the session recorder, completion detector and daily
    aggregator.

    Time only accumulates while the item is playing, the transport reports
    playing and the surface is visible.
    """

    def __init__(self, transport: TransportAdapter, store: IProgressStore, scheduler: IScheduler,
                 recorder: SessionRecorder, completion: CompletionDetector,
                 aggregator: DailyAggregator,
                 tick_interval: float = config.TICK_INTERVAL_SECONDS,
                 default_rate: float = 1.0, default_volume: float = 1.0):
        self.transport = transport
        self.store = store
        self.scheduler = scheduler
        self.recorder = recorder
        self.completion = completion
        self.aggregator = aggregator
        self.tick_interval = tick_interval

        self._current: Optional[MediaItem] = None
        self._queue: List[MediaItem] = []
        self._history: List[MediaItem] = []
        self._status = PlaybackStatus.IDLE
        self._position = 0.0
        self._duration = 0.0
        self._session: Optional[Session] = None
        self._tracked = 0.0
        self._unreported = 0.0
        self._rate_sum = 0.0
        self._rate_samples = 0
        self._hidden = False
        self._rate = self._clamp_rate(default_rate)
        self._volume = min(1.0, max(0.0, _finite(default_volume) or 0.0))
        self._muted = False

        self._ticker = TickTimer(scheduler)
        self._errors: ListenerRegistry[TransportError] = ListenerRegistry()
        self._unsubscribe_transport = transport.on_state_change(self._on_transport_state)

    # --- Read accessors ---

    @property
    def current(self) -> Optional[MediaItem]:
        return self._current

    @property
    def queue(self) -> List[MediaItem]:
        return list(self._queue)

    @property
    def history(self) -> List[MediaItem]:
        return list(self._history)

    @property
    def status(self) -> PlaybackStatus:
        return self._status

    @property
    def is_playing(self) -> bool:
        return self._status == PlaybackStatus.PLAYING

    @property
    def position_seconds(self) -> int:
        return math.floor(self._position)

    @property
    def duration_seconds(self) -> float:
        return self._duration

    @property
    def daily_total(self) -> int:
        return self.aggregator.daily_total

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def muted(self) -> bool:
        return self._muted

    def subscribe(self, listener: Callable[[int], None]) -> Callable[[], None]:
        """Registers a daily total listener."""
        return self.aggregator.subscribe(listener)

    def subscribe_errors(self, listener: Callable[[TransportError], None]) -> Callable[[], None]:
        return self._errors.add(listener)

    # --- Playback commands ---

    def play(self, item: MediaItem, start_at_seconds: Optional[float] = None) -> None:
        """
        Makes `item` the current item and starts it.

        Without start_at_seconds the stored position is used, restarting from
        0 near the end. The outgoing item's session is closed in the
        background.
        """
        if self._current is not None and self._current.key == item.key:
            if self._status == PlaybackStatus.PLAYING:
                return
            if self._status == PlaybackStatus.PAUSED and start_at_seconds is None:
                self.resume()
                return

        self._release_current()
        self._start(item, self._initial_position(item, start_at_seconds))

    def _initial_position(self, item: MediaItem, start_at_seconds: Optional[float]) -> float:
        if start_at_seconds is not None:
            start_at = _finite(start_at_seconds)
            return max(0.0, start_at) if start_at is not None else 0.0
        stored = item.last_position_seconds
        try:
            progress = self.store.get_item_progress(item.id)
            if progress.last_position_seconds > 0:
                stored = progress.last_position_seconds
        except PersistenceError as e:
            logger.warning("Could not read stored position of %s: %s", item.id, e)
        return resume_position(item.duration_seconds, stored)

    def _start(self, item: MediaItem, position: float) -> None:
        self._current = item
        self._status = PlaybackStatus.LOADING
        self._position = position
        self._duration = _finite(item.duration_seconds) or 0.0
        self._rate_sum = 0.0
        self._rate_samples = 0
        self._unreported = 0.0
        self._open_session()

        logger.info("Playing %s %r from %ss", item.kind.value, item.title, math.floor(position))
        try:
            self.transport.activate(item.kind)
            self.transport.set_rate(self._rate)
            self.transport.set_volume(self._volume)
            self.transport.set_muted(self._muted)
            self.transport.load(item.source, position)
            self.transport.play()
        except TransportError as e:
            self._fail(e)

    def pause(self) -> None:
        if self._current is None:
            return
        self.transport.pause()
        if self._status != PlaybackStatus.PAUSED:
            self._enter_paused()

    def resume(self) -> None:
        if self._current is None:
            return
        if self._status in (PlaybackStatus.ENDED, PlaybackStatus.STOPPED, PlaybackStatus.ERRORED):
            self.play(self._current)
            return
        self.transport.play()

    def stop(self) -> None:
        """Stops playback, closing the open session at the last known position."""
        if self._current is None:
            self._status = PlaybackStatus.STOPPED
            return
        self._ticker.stop_ticking()
        self._sample_position()
        item = self._current
        session = self._session
        self._current = None
        self._session = None
        self._status = PlaybackStatus.STOPPED
        self._remember(item)

        self.transport.stop()
        if session is not None:
            self.recorder.close(session.id, self._tracked, position=self._position)
        logger.info("Stopped %r at %ss", item.title, math.floor(self._position))

    def next(self) -> None:
        """Plays the head of the queue, or stops when the queue is empty."""
        if not self._queue:
            self.stop()
            return
        self.play(self._queue.pop(0))

    def prev(self) -> None:
        """
        Restarts the current item, or goes back to the previously played one
        when the current item has only just started.
        """
        current = self._current
        if current is not None and (self._position > config.PREV_RESTART_THRESHOLD_SECONDS
                                    or not self._history):
            self.seek(0)
            return
        if not self._history:
            return
        previous = self._history.pop()
        if current is not None:
            self._queue = [q for q in self._queue if q.key != current.key]
            self._queue.insert(0, current)
        self._release_current(remember=False)
        self._start(previous, self._initial_position(previous, None))

    def seek(self, seconds: float) -> None:
        target = _finite(seconds)
        if self._current is None or target is None:
            return
        target = max(0.0, target)
        if self._duration > 0:
            target = min(target, self._duration)
        self.transport.seek(target)
        self._position = target

    def set_rate(self, rate: float) -> None:
        if _finite(rate) is None:
            return
        self._rate = self._clamp_rate(rate)
        self.transport.set_rate(self._rate)

    def set_volume(self, volume: float) -> None:
        value = _finite(volume)
        if value is None:
            return
        self._volume = min(1.0, max(0.0, value))
        self.transport.set_volume(self._volume)

    def set_muted(self, muted: bool) -> None:
        self._muted = bool(muted)
        self.transport.set_muted(self._muted)

    @staticmethod
    def _clamp_rate(rate) -> float:
        value = _finite(rate) or 1.0
        return min(config.MAX_PLAYBACK_RATE, max(config.MIN_PLAYBACK_RATE, value))

    # --- Queue ---

    def enqueue_next(self, item: MediaItem) -> None:
        """Puts `item` at the head of the queue, moving it if already queued."""
        self._queue = [q for q in self._queue if q.key != item.key]
        self._queue.insert(0, item)

    def enqueue_last(self, item: MediaItem) -> None:
        """Puts `item` at the end of the queue, moving it if already queued."""
        self._queue = [q for q in self._queue if q.key != item.key]
        self._queue.append(item)

    def remove_from_queue(self, media_id: str, kind: Optional[MediaKind] = None) -> None:
        self._queue = [q for q in self._queue
                       if not (q.id == media_id and (kind is None or q.kind == kind))]

    def reorder_queue(self, start_index: int, end_index: int) -> None:
        if not (0 <= start_index < len(self._queue)):
            return
        item = self._queue.pop(start_index)
        end_index = min(max(0, end_index), len(self._queue))
        self._queue.insert(end_index, item)

    def clear_queue(self) -> None:
        self._queue = []

    def is_in_queue(self, media_id: str) -> bool:
        return any(q.id == media_id for q in self._queue)

    # --- Surface visibility ---

    def on_hidden(self) -> None:
        """Last-chance persistence when the playback surface goes away."""
        self._hidden = True
        self._close_session_now()
        self.aggregator.flush()

    def on_visible(self) -> None:
        self._hidden = False
        if self._current is not None and self._status == PlaybackStatus.PLAYING \
                and self._session is None:
            self._open_session()

    def shutdown(self) -> None:
        """Stops the tick loop and persists everything still in memory."""
        self._ticker.stop_ticking()
        self._close_session_now()
        self.aggregator.flush()
        self._unsubscribe_transport()

    # --- Ticks ---

    def _on_tick(self) -> None:
        item = self._current
        if item is None or self._status != PlaybackStatus.PLAYING or self._hidden:
            return
        if self.transport.get_state() != TransportState.PLAYING:
            return

        self._sample_position()
        duration = _finite(self.transport.get_duration())
        if duration is not None and duration > 0:
            self._duration = duration
        rate = _finite(self.transport.get_rate())
        if rate is not None and rate > 0:
            self._rate_sum += rate
            self._rate_samples += 1

        self._tracked += self.tick_interval
        self._unreported += self.tick_interval
        whole_seconds = math.floor(self._unreported)
        self._unreported -= whole_seconds

        if self._session is not None:
            self.recorder.checkpoint(self._session.id, self._tracked, self._avg_rate(),
                                     position=self._position)
        self.completion.on_tick(item.id, self._position, self._duration)
        self.aggregator.add_time(whole_seconds)

    def _avg_rate(self) -> float:
        if self._rate_samples == 0:
            return 1.0
        return self._rate_sum / self._rate_samples

    def _sample_position(self) -> None:
        # Before the transport is ready its position says nothing about ours
        if self._status not in (PlaybackStatus.PLAYING, PlaybackStatus.PAUSED):
            return
        position = _finite(self.transport.get_position())
        if position is not None and position >= 0:
            self._position = position

    # --- Transport events ---

    def _on_transport_state(self, state: TransportState) -> None:
        if self._current is None:
            return
        logger.debug("Transport reported %s for %r", state.value, self._current.title)

        if state == TransportState.PLAYING:
            if self._status not in (PlaybackStatus.LOADING, PlaybackStatus.PAUSED,
                                    PlaybackStatus.PLAYING):
                return
            self._status = PlaybackStatus.PLAYING
            if self._session is None and not self._hidden:
                self._open_session()
            if not self._ticker.active:
                self._ticker.start_ticking(self.tick_interval, self._on_tick)
        elif state == TransportState.PAUSED:
            if self._status in (PlaybackStatus.PLAYING, PlaybackStatus.LOADING):
                self._enter_paused()
        elif state == TransportState.ENDED:
            self._finish_item()
        elif state == TransportState.ERROR:
            self._fail(TransportError(f"Playback of {self._current.title!r} failed",
                                      self._current.source))

    def _enter_paused(self) -> None:
        self._ticker.stop_ticking()
        self._sample_position()
        self._status = PlaybackStatus.PAUSED
        if self._session is not None:
            self.recorder.checkpoint(self._session.id, self._tracked, self._avg_rate(),
                                     position=self._position, force=True)

    def _finish_item(self) -> None:
        item = self._current
        self._ticker.stop_ticking()
        self._status = PlaybackStatus.ENDED
        duration = self._duration or _finite(self.transport.get_duration()) or item.duration_seconds
        self._position = duration
        self.completion.mark_completed(item.id)
        self._close_session_now()
        logger.info("Finished %r", item.title)
        self.next()

    def _fail(self, error: TransportError) -> None:
        """Closes the session, surfaces the error and moves on."""
        logger.error("Transport error: %s", error)
        self._ticker.stop_ticking()
        self._status = PlaybackStatus.ERRORED
        self._close_session_now()
        self._errors.notify(error)
        self.next()

    # --- Sessions ---

    def _open_session(self) -> None:
        item = self._current
        self._session = self.recorder.start_or_resume(item.id, item.kind)
        self._tracked = float(self._session.seconds_tracked) if self._session else 0.0

    def _close_session_now(self) -> None:
        session = self._session
        if session is None:
            return
        self._session = None
        self._sample_position()
        self.recorder.close(session.id, self._tracked, position=self._position)

    def _release_current(self, remember: bool = True) -> None:
        """
        Lets go of the current item before another one starts.

        The outgoing session is closed with call_soon and not waited for.
        """
        item = self._current
        if item is None:
            return
        self._ticker.stop_ticking()
        self._sample_position()
        session, tracked, position = self._session, self._tracked, self._position
        self._session = None
        self._current = None
        if remember:
            self._remember(item)
        if session is not None:
            self.scheduler.call_soon(lambda: self.recorder.close(session.id, tracked, position=position))

    def _remember(self, item: MediaItem) -> None:
        if self._history and self._history[-1].key == item.key:
            return
        self._history.append(item)
