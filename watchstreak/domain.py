from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


class TransportState(str, Enum):
    """States a transport backend reports through its state-change callback."""
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    ENDED = "ended"
    ERROR = "error"


class PlaybackStatus(str, Enum):
    """Lifecycle of the item currently held by the playback controller."""
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    STOPPED = "stopped"
    ERRORED = "errored"


@dataclass
class MediaItem:
    """A video or audio item as provided by the catalog."""
    kind: MediaKind
    id: str
    title: str
    duration_seconds: float = 0.0
    last_position_seconds: float = 0.0
    is_completed: bool = False
    source: str = ""  # Path or URL handed to the transport

    @property
    def key(self) -> Tuple[str, str]:
        return (self.kind.value, self.id)


@dataclass
class Session:
    """One contiguous tracked interval of playback for a single media item."""
    id: str
    media_id: str
    media_kind: MediaKind = MediaKind.VIDEO
    user_scope: str = "local"
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    seconds_tracked: int = 0
    avg_rate: float = 1.0
    source: str = "desktop"
    updated_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


@dataclass
class ItemProgress:
    """Durable per-item progress fields."""
    last_position_seconds: float = 0.0
    is_completed: bool = False


@dataclass
class UserAggregate:
    """Lifetime totals, goal and streak for one user scope."""
    total_seconds: int = 0
    daily_goal_seconds: int = 30 * 60
    streak_days: int = 0
    last_watched_at: Optional[datetime] = None
    last_achieved_date: Optional[date] = None
