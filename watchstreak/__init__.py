from watchstreak.aggregator import DailyAggregator
from watchstreak.completion import CompletionDetector
from watchstreak.controller import PlaybackController
from watchstreak.domain import (
    ItemProgress,
    MediaItem,
    MediaKind,
    PlaybackStatus,
    Session,
    TransportState,
    UserAggregate,
)
from watchstreak.exceptions import PersistenceError, TransportError, WatchstreakError
from watchstreak.recorder import SessionRecorder
from watchstreak.repository import JsonProgressStore
from watchstreak.streak import StreakEvaluator
from watchstreak.transport import TransportAdapter

__version__ = "0.1.0"

__all__ = [
    "CompletionDetector",
    "DailyAggregator",
    "ItemProgress",
    "JsonProgressStore",
    "MediaItem",
    "MediaKind",
    "PersistenceError",
    "PlaybackController",
    "PlaybackStatus",
    "Session",
    "SessionRecorder",
    "StreakEvaluator",
    "TransportAdapter",
    "TransportError",
    "TransportState",
    "UserAggregate",
    "WatchstreakError",
]
