import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from watchstreak import config
from watchstreak.aggregator import DailyAggregator
from watchstreak.catalog import items_from_path
from watchstreak.completion import CompletionDetector
from watchstreak.controller import PlaybackController
from watchstreak.domain import MediaItem, MediaKind
from watchstreak.drivers.mpv_driver import MpvTransport
from watchstreak.exceptions import PersistenceError
from watchstreak.interfaces import IScheduler
from watchstreak.recorder import SessionRecorder
from watchstreak.repository import JsonProgressStore
from watchstreak.scheduler import AsyncioScheduler
from watchstreak.settings import DEFAULT_SETTINGS
from watchstreak.streak import StreakEvaluator
from watchstreak.transport import TransportAdapter

logger = logging.getLogger(__name__)


class TrackingService:
    """
    Wires the progress store, the transport and the trackers for one user
    scope, and keeps the small local library the dashboard lists.

    Every component is constructed here once and passed by reference; there
    is no module-level tracker state.
    """

    def __init__(self, store: JsonProgressStore, transport: TransportAdapter,
                 scheduler: IScheduler, settings: Optional[Dict[str, Any]] = None):
        self.settings = {**DEFAULT_SETTINGS, **(settings or {})}
        self.store = store
        self.transport = transport
        self.scheduler = scheduler

        self.recorder = SessionRecorder(store, scheduler, source=self.settings["session_source"])
        self.completion = CompletionDetector(store)
        self.streak = StreakEvaluator(store, scheduler)
        self.aggregator = DailyAggregator(
            store, scheduler, self.streak,
            debounce_seconds=float(self.settings["aggregate_debounce_seconds"]),
        )
        self.controller = PlaybackController(
            transport, store, scheduler, self.recorder, self.completion, self.aggregator,
            tick_interval=float(self.settings["tick_interval_seconds"]),
            default_rate=self.settings["default_playback_rate"],
            default_volume=self.settings["default_volume"],
        )

    def start(self) -> int:
        """Closes sessions a crashed run left open, then loads today's total; returns it."""
        self.recorder.close_abandoned()
        return self.aggregator.start()

    def shutdown(self) -> None:
        self.controller.shutdown()
        self.aggregator.stop()
        self.transport.close()

    # --- Library ---

    def add_path(self, path: str) -> List[MediaItem]:
        """Adds a file, or every media file of a folder, to the library."""
        items = items_from_path(path)
        for item in items:
            try:
                self.store.save_item(item)
            except PersistenceError as e:
                logger.warning("Could not add %s to the library: %s", item.source, e)
        logger.info("Added %d item(s) from %s", len(items), path)
        return items

    def get_library(self) -> List[MediaItem]:
        return self.store.list_items()

    def get_item(self, media_id: str) -> Optional[MediaItem]:
        return self.store.get_item(media_id)

    def delete_item(self, media_id: str) -> None:
        self.controller.remove_from_queue(media_id)
        self.store.delete_item(media_id)

    def reset_item(self, media_id: str) -> None:
        """Clears completion and position so the item plays from the start."""
        self.store.set_item_progress(media_id, {"last_position_seconds": 0, "is_completed": False})
        self.completion.forget(media_id)

    def play_item(self, media_id: str, start_at_seconds: Optional[float] = None) -> bool:
        item = self.store.get_item(media_id)
        if item is None:
            return False
        self.controller.play(item, start_at_seconds)
        return True

    def remember_duration(self) -> None:
        """Copies a duration learned from the transport into the library item."""
        item = self.controller.current
        duration = self.controller.duration_seconds
        if item is None or duration <= 0 or duration <= item.duration_seconds:
            return
        item.duration_seconds = duration
        try:
            self.store.save_item(item)
        except PersistenceError as e:
            logger.warning("Could not store duration of %s: %s", item.id, e)

    # --- Stats ---

    def set_daily_goal(self, goal_seconds: int) -> int:
        return self.aggregator.set_goal(goal_seconds)

    def stats(self) -> Dict[str, Any]:
        aggregate = self.store.get_user_aggregate()
        return {
            "daily_total": self.aggregator.daily_total,
            "daily_goal_seconds": aggregate.daily_goal_seconds,
            "streak_days": aggregate.streak_days,
            "total_seconds": aggregate.total_seconds + self.aggregator.pending_seconds,
            "last_watched_at": aggregate.last_watched_at,
            "goal_met_today": self.streak.has_achieved_goal_today()
            or self.aggregator.daily_total >= aggregate.daily_goal_seconds,
            "history": self.aggregator.weekly_totals(config.HISTORY_DAYS),
        }


def create_service(settings: Dict[str, Any],
                   loop: Optional[asyncio.AbstractEventLoop] = None) -> TrackingService:
    """Builds a TrackingService backed by mpv and the JSON progress store."""
    settings = {**DEFAULT_SETTINGS, **settings}
    scheduler = AsyncioScheduler(loop)
    store = JsonProgressStore(Path(settings["storage_path"]).expanduser(),
                              user_scope=settings["user_scope"], clock=scheduler.now)
    executable = settings["player_executable"]
    transport = TransportAdapter({
        MediaKind.VIDEO: MpvTransport(executable),
        MediaKind.AUDIO: MpvTransport(executable, audio_only=True),
    })
    return TrackingService(store, transport, scheduler, settings)
