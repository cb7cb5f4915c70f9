"""Session Recorder: lifecycle of the tracked session for the playing item."""

import logging
import math
from datetime import datetime
from typing import Dict, Optional

from watchstreak import config
from watchstreak.domain import MediaKind, Session
from watchstreak.exceptions import PersistenceError
from watchstreak.interfaces import IProgressStore, IScheduler

logger = logging.getLogger(__name__)


def _finite_non_negative(value) -> Optional[float]:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


class SessionRecorder:
    """
    Starts, checkpoints and closes sessions against the progress store.

    Starting is find-or-create, so two views of the same item converge on
    one open session without an in-process lock. Persistence failures are
    logged and swallowed: losing a checkpoint under-counts, it never breaks
    playback.
    """

    def __init__(self, store: IProgressStore, scheduler: IScheduler,
                 source: str = "desktop",
                 checkpoint_interval: float = config.CHECKPOINT_INTERVAL_SECONDS):
        self.store = store
        self.scheduler = scheduler
        self.source = source
        self.checkpoint_interval = checkpoint_interval
        self._last_checkpoint: Dict[str, datetime] = {}

    def start_or_resume(self, media_id: str,
                        media_kind: MediaKind = MediaKind.VIDEO) -> Optional[Session]:
        """
        Returns the open session for media_id, creating one if none exists.

        Returns:
            Optional[Session]: The session, or None if the store failed.
        """
        try:
            with self.store.batch():
                existing = self.store.find_open_session(media_id)
                if existing is not None:
                    logger.info("Resuming open session %s for %s (%ss tracked)",
                                existing.id, media_id, existing.seconds_tracked)
                    return existing
                session = self.store.create_session(media_id, media_kind, self.source)
        except PersistenceError as e:
            logger.warning("Could not start a session for %s: %s", media_id, e)
            return None
        logger.info("Started session %s for %s", session.id, media_id)
        return session

    def checkpoint(self, session_id: str, seconds_tracked: float, avg_rate: float = 1.0,
                   position: Optional[float] = None, force: bool = False) -> bool:
        """
        Writes in-progress state of an open session.

        Writes are throttled to one per checkpoint interval unless forced.
        seconds_tracked never goes down. When position is given, the item's
        last position is written too so a crash still resumes close by.

        Returns:
            bool: True if a write happened.
        """
        seconds = _finite_non_negative(seconds_tracked)
        if not session_id or seconds is None:
            return False

        now = self.scheduler.now()
        last = self._last_checkpoint.get(session_id)
        if not force and last is not None and \
                (now - last).total_seconds() < self.checkpoint_interval:
            return False

        try:
            session = self.store.get_session(session_id)
            if session is None or not session.is_open:
                self._last_checkpoint.pop(session_id, None)
                return False
            patch = {"avg_rate": avg_rate}
            if math.floor(seconds) > session.seconds_tracked:
                patch["seconds_tracked"] = math.floor(seconds)
            # One file write for both records
            with self.store.batch():
                self.store.update_session(session_id, patch)
                valid_position = _finite_non_negative(position)
                if valid_position is not None:
                    self.store.set_item_progress(session.media_id,
                                                 {"last_position_seconds": valid_position})
        except PersistenceError as e:
            logger.warning("Checkpoint of session %s failed: %s", session_id, e)
            return False

        self._last_checkpoint[session_id] = now
        logger.debug("Checkpoint %s: %ss at rate %.2f", session_id, math.floor(seconds), avg_rate)
        return True

    def close(self, session_id: str, final_seconds: float,
              position: Optional[float] = None) -> bool:
        """
        Closes a session and carries the final position into the item's progress.

        final_seconds becomes the session's tracked seconds; the item's
        last_position_seconds is set to position, or to final_seconds when no
        position is given.

        Returns:
            bool: True if an open session was closed.
        """
        if not session_id:
            return False
        seconds = _finite_non_negative(final_seconds)
        self._last_checkpoint.pop(session_id, None)

        try:
            session = self.store.get_session(session_id)
            if session is None or not session.is_open:
                logger.debug("Ignoring close of unknown or closed session %s", session_id)
                return False
            if seconds is None:
                seconds = session.seconds_tracked
            final_position = _finite_non_negative(position)
            if final_position is None:
                final_position = seconds
            with self.store.batch():
                self.store.close_session(session_id, math.floor(seconds))
                self.store.set_item_progress(session.media_id,
                                             {"last_position_seconds": final_position})
        except PersistenceError as e:
            logger.warning("Closing session %s failed: %s", session_id, e)
            return False

        logger.info("Closed session %s for %s at %ss", session_id, session.media_id,
                    math.floor(seconds))
        return True

    def close_abandoned(self, stale_after: float = config.STALE_SESSION_SECONDS) -> int:
        """
        Closes open sessions a previous run never closed, keeping their last
        checkpointed seconds and the item's last stored position.

        Sessions checkpointed within stale_after seconds are left alone, they
        may belong to another live view of the same store.

        Returns:
            int: Number of sessions closed.
        """
        try:
            sessions = self.store.list_open_sessions()
        except PersistenceError as e:
            logger.warning("Could not look for abandoned sessions: %s", e)
            return 0

        now = self.scheduler.now()
        closed = 0
        for session in sessions:
            last_seen = session.updated_at or session.started_at
            if (now - last_seen).total_seconds() < stale_after:
                continue
            try:
                position = self.store.get_item_progress(session.media_id).last_position_seconds
            except PersistenceError as e:
                logger.warning("Could not read progress of %s: %s", session.media_id, e)
                position = None
            if self.close(session.id, session.seconds_tracked, position):
                closed += 1
        if closed:
            logger.info("Closed %d session(s) left open by a previous run", closed)
        return closed
