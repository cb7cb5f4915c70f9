import json
import logging
import math
import os
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from watchstreak import config
from watchstreak.domain import ItemProgress, MediaItem, MediaKind, Session, UserAggregate
from watchstreak.exceptions import PersistenceError
from watchstreak.interfaces import IProgressStore

logger = logging.getLogger(__name__)

STORE_VERSION = 1


class JSONEncoder(json.JSONEncoder):
    """Custom JSON encoder to handle datetime and date objects."""
    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, MediaKind):
            return obj.value
        return super().default(obj)


def _whole_seconds(value: Any) -> int:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, math.floor(value))


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


class JsonProgressStore(IProgressStore):
    """
    Concrete implementation of IProgressStore that keeps sessions, item
    progress and user aggregates in a local JSON file.

    Every mutation rewrites the file through a temporary file and an atomic
    rename. Several stores (or processes) may share one file: each call
    re-reads the file first when another writer replaced it, so an open
    session created elsewhere is found instead of duplicated, and a write
    never drops records it has not seen. With storage_file=None the store
    lives in memory only.
    """

    def __init__(self, storage_file: Optional[Path], user_scope: str = "local",
                 clock: Callable[[], datetime] = datetime.now):
        self.storage_file = Path(storage_file) if storage_file is not None else None
        self.user_scope = user_scope
        self.clock = clock
        self._stamp: Optional[tuple] = None
        self._batch_depth = 0
        self._dirty = False
        self.data: Dict[str, Any] = self._load_from_file()
        self._stamp = self._file_stamp()

    # --- File handling ---

    def _empty(self) -> Dict[str, Any]:
        return {"version": STORE_VERSION, "items": {}, "sessions": {}, "aggregates": {}}

    def _file_stamp(self) -> Optional[tuple]:
        if self.storage_file is None:
            return None
        try:
            st = os.stat(self.storage_file)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot stat {self.storage_file}: {e}") from e
        return (st.st_ino, st.st_size, st.st_mtime_ns, st.st_ctime_ns)

    def _refresh(self) -> None:
        """Reloads the file if another writer replaced it since our last read or write."""
        if self.storage_file is None or self._batch_depth:
            return
        stamp = self._file_stamp()
        if stamp is None or stamp == self._stamp:
            return
        logger.debug("Progress file %s changed on disk; reloading", self.storage_file)
        self.data = self._load_from_file()
        self._stamp = self._file_stamp()

    @contextmanager
    def batch(self):
        """Groups several mutations into a single file write."""
        self._refresh()
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if not self._batch_depth and self._dirty:
                self._save_to_file()

    def _section(self, name: str) -> Dict[str, Any]:
        self._refresh()
        return self.data[name]

    def _load_from_file(self) -> Dict[str, Any]:
        """Loads the store from the JSON file."""
        if self.storage_file is None or not self.storage_file.exists():
            return self._empty()

        try:
            with open(self.storage_file, 'r', encoding='utf-8') as f:
                raw_data = json.load(f)
        except ValueError as e:
            # Keep the unreadable file around instead of overwriting it on the next save
            backup = self.storage_file.with_name(self.storage_file.name + ".corrupt")
            logger.warning("Progress file %s is unreadable (%s); moved to %s",
                           self.storage_file, e, backup)
            try:
                os.replace(self.storage_file, backup)
            except OSError as move_error:
                raise PersistenceError(f"Cannot move aside {self.storage_file}: {move_error}") from e
            return self._empty()
        except OSError as e:
            raise PersistenceError(f"Cannot read {self.storage_file}: {e}") from e

        data = self._empty()
        if isinstance(raw_data, dict):
            for section in ("items", "sessions", "aggregates"):
                if isinstance(raw_data.get(section), dict):
                    data[section] = raw_data[section]
        return data

    def _save_to_file(self) -> None:
        """Saves the current data to the JSON file."""
        if self.storage_file is None:
            return
        if self._batch_depth:
            self._dirty = True
            return
        self._dirty = False
        tmp_file = self.storage_file.with_name(self.storage_file.name + ".tmp")
        try:
            self.storage_file.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, 'w', encoding='utf-8') as f:
                json.dump(self.data, f, indent=4, cls=JSONEncoder)
            os.replace(tmp_file, self.storage_file)
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.storage_file}: {e}") from e
        self._stamp = self._file_stamp()

    # --- Sessions ---

    def _session_from_dict(self, raw: Dict[str, Any]) -> Session:
        return Session(
            id=raw["id"],
            media_id=raw["media_id"],
            media_kind=MediaKind(raw.get("media_kind", MediaKind.VIDEO.value)),
            user_scope=raw.get("user_scope", self.user_scope),
            started_at=_parse_datetime(raw.get("started_at")) or datetime.min,
            ended_at=_parse_datetime(raw.get("ended_at")),
            seconds_tracked=_whole_seconds(raw.get("seconds_tracked", 0)),
            avg_rate=float(raw.get("avg_rate", 1.0)),
            source=raw.get("source", ""),
            updated_at=_parse_datetime(raw.get("updated_at")),
        )

    def _own_sessions(self) -> List[Dict[str, Any]]:
        return [s for s in self._section("sessions").values()
                if s.get("user_scope", self.user_scope) == self.user_scope]

    def create_session(self, media_id: str, media_kind: MediaKind = MediaKind.VIDEO,
                       source: str = "desktop") -> Session:
        session_id = uuid.uuid4().hex
        raw = {
            "id": session_id,
            "media_id": media_id,
            "media_kind": MediaKind(media_kind).value,
            "user_scope": self.user_scope,
            "started_at": self.clock().isoformat(),
            "ended_at": None,
            "seconds_tracked": 0,
            "avg_rate": 1.0,
            "source": source,
            "updated_at": None,
        }
        self._section("sessions")[session_id] = raw
        self._save_to_file()
        return self._session_from_dict(raw)

    def find_open_session(self, media_id: str) -> Optional[Session]:
        candidates = [s for s in self._own_sessions()
                      if s.get("media_id") == media_id and not s.get("ended_at")]
        if not candidates:
            return None
        candidates.sort(key=lambda s: s.get("started_at") or "", reverse=True)
        if len(candidates) > 1:
            logger.warning("Found %d open sessions for %s; reusing the newest (%s)",
                           len(candidates), media_id, candidates[0]["id"])
        return self._session_from_dict(candidates[0])

    def get_session(self, session_id: str) -> Optional[Session]:
        raw = self._section("sessions").get(session_id)
        return self._session_from_dict(raw) if raw else None

    def list_sessions(self, media_id: Optional[str] = None) -> List[Session]:
        """Returns all sessions of this user scope, oldest first."""
        sessions = [self._session_from_dict(s) for s in self._own_sessions()
                    if media_id is None or s.get("media_id") == media_id]
        return sorted(sessions, key=lambda s: s.started_at)

    def list_open_sessions(self) -> List[Session]:
        return [s for s in self.list_sessions() if s.is_open]

    def update_session(self, session_id: str, patch: Dict[str, Any]) -> bool:
        """
        Applies a partial update to a session.

        Returns:
            bool: False if the session does not exist, True otherwise.
        """
        raw = self._section("sessions").get(session_id)
        if raw is None:
            return False
        if "seconds_tracked" in patch:
            raw["seconds_tracked"] = _whole_seconds(patch["seconds_tracked"])
        if "avg_rate" in patch:
            try:
                rate = float(patch["avg_rate"])
            except (TypeError, ValueError):
                rate = 1.0
            if not math.isfinite(rate):
                rate = 1.0
            raw["avg_rate"] = min(config.MAX_SESSION_RATE, max(config.MIN_SESSION_RATE, rate))
        if "ended_at" in patch:
            ended_at = patch["ended_at"]
            raw["ended_at"] = ended_at.isoformat() if isinstance(ended_at, datetime) else ended_at
        raw["updated_at"] = self.clock().isoformat()
        self._save_to_file()
        return True

    def close_session(self, session_id: str, final_seconds: int) -> bool:
        """
        Closes an open session.

        Returns:
            bool: False if the session is unknown or already closed.
        """
        raw = self._section("sessions").get(session_id)
        if raw is None or raw.get("ended_at"):
            return False
        raw["ended_at"] = self.clock().isoformat()
        raw["updated_at"] = raw["ended_at"]
        raw["seconds_tracked"] = _whole_seconds(final_seconds)
        self._save_to_file()
        return True

    def sum_session_seconds(self, kind: Optional[MediaKind], started_after: datetime,
                            started_before: datetime) -> int:
        total = 0
        for raw in self._own_sessions():
            if not raw.get("ended_at"):
                continue
            if kind is not None and raw.get("media_kind") != MediaKind(kind).value:
                continue
            started_at = _parse_datetime(raw.get("started_at"))
            if started_at is None or not (started_after <= started_at < started_before):
                continue
            total += _whole_seconds(raw.get("seconds_tracked", 0))
        return total

    def total_seconds_for_item(self, media_id: str) -> int:
        """Returns all tracked seconds of closed sessions for one item."""
        return sum(s.seconds_tracked for s in self.list_sessions(media_id) if not s.is_open)

    # --- Item progress ---

    def get_item_progress(self, media_id: str) -> ItemProgress:
        raw = self._section("items").get(media_id, {})
        return ItemProgress(
            last_position_seconds=float(_whole_seconds(raw.get("last_position_seconds", 0))),
            is_completed=bool(raw.get("is_completed", False)),
        )

    def set_item_progress(self, media_id: str, patch: Dict[str, Any]) -> None:
        raw = self._section("items").setdefault(media_id, {"id": media_id})
        if "last_position_seconds" in patch:
            raw["last_position_seconds"] = _whole_seconds(patch["last_position_seconds"])
        if "is_completed" in patch:
            raw["is_completed"] = bool(patch["is_completed"])
        raw["updated_at"] = self.clock().isoformat()
        self._save_to_file()

    # --- Library ---

    def save_item(self, item: MediaItem) -> None:
        """Stores catalog fields of an item, keeping any progress already recorded."""
        raw = self._section("items").setdefault(item.id, {
            "id": item.id,
            "last_position_seconds": _whole_seconds(item.last_position_seconds),
            "is_completed": item.is_completed,
        })
        raw["kind"] = item.kind.value
        raw["title"] = item.title
        raw["source"] = item.source
        raw["duration_seconds"] = max(float(raw.get("duration_seconds") or 0.0),
                                      float(item.duration_seconds or 0.0))
        raw["updated_at"] = self.clock().isoformat()
        self._save_to_file()

    def get_item(self, media_id: str) -> Optional[MediaItem]:
        raw = self._section("items").get(media_id)
        if not raw or "kind" not in raw:
            return None
        return MediaItem(
            kind=MediaKind(raw["kind"]),
            id=media_id,
            title=raw.get("title", media_id),
            duration_seconds=float(raw.get("duration_seconds") or 0.0),
            last_position_seconds=float(_whole_seconds(raw.get("last_position_seconds", 0))),
            is_completed=bool(raw.get("is_completed", False)),
            source=raw.get("source", ""),
        )

    def list_items(self) -> List[MediaItem]:
        """Returns library items, most recently updated first."""
        ordered = sorted(self._section("items").values(),
                         key=lambda raw: raw.get("updated_at") or "", reverse=True)
        items = [self.get_item(raw["id"]) for raw in ordered if "id" in raw]
        return [item for item in items if item is not None]

    def delete_item(self, media_id: str) -> None:
        if media_id in self._section("items"):
            del self._section("items")[media_id]
            self._save_to_file()

    # --- User aggregate ---

    def get_user_aggregate(self) -> UserAggregate:
        raw = self._section("aggregates").get(self.user_scope, {})
        return UserAggregate(
            total_seconds=_whole_seconds(raw.get("total_seconds", 0)),
            daily_goal_seconds=_whole_seconds(
                raw.get("daily_goal_seconds", config.DEFAULT_DAILY_GOAL_SECONDS)),
            streak_days=_whole_seconds(raw.get("streak_days", 0)),
            last_watched_at=_parse_datetime(raw.get("last_watched_at")),
            last_achieved_date=_parse_date(raw.get("last_achieved_date")),
        )

    def update_user_aggregate(self, patch: Dict[str, Any]) -> None:
        raw = self._section("aggregates").setdefault(self.user_scope, {})
        if "total_seconds" in patch:
            raw["total_seconds"] = _whole_seconds(patch["total_seconds"])
        if "daily_goal_seconds" in patch:
            raw["daily_goal_seconds"] = max(config.MIN_DAILY_GOAL_SECONDS,
                                            _whole_seconds(patch["daily_goal_seconds"]))
        if "streak_days" in patch:
            raw["streak_days"] = _whole_seconds(patch["streak_days"])
        if "last_watched_at" in patch:
            value = patch["last_watched_at"]
            raw["last_watched_at"] = value.isoformat() if isinstance(value, datetime) else value
        if "last_achieved_date" in patch:
            value = patch["last_achieved_date"]
            raw["last_achieved_date"] = value.isoformat() if isinstance(value, date) else value
        raw["updated_at"] = self.clock().isoformat()
        self._save_to_file()
