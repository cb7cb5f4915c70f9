"""Completion Detector: flags items as completed once near the end."""

import logging
import math
from typing import Set

from watchstreak import config
from watchstreak.exceptions import PersistenceError
from watchstreak.interfaces import IProgressStore

logger = logging.getLogger(__name__)


def completion_threshold(duration: float) -> float:
    """Position at which an item of the given duration counts as completed."""
    return min(duration * config.COMPLETION_RATIO, duration - config.COMPLETION_TAIL_SECONDS)


class CompletionDetector:
    """Marks items completed exactly once; never un-completes them."""

    def __init__(self, store: IProgressStore):
        self.store = store
        self._completed: Set[str] = set()

    def is_completed(self, media_id: str) -> bool:
        if media_id in self._completed:
            return True
        try:
            completed = self.store.get_item_progress(media_id).is_completed
        except PersistenceError as e:
            logger.warning("Could not read progress of %s: %s", media_id, e)
            return False
        if completed:
            self._completed.add(media_id)
        return completed

    def on_tick(self, media_id: str, position: float, duration: float) -> bool:
        """
        Checks a live position against the completion threshold.

        Items shorter than the minimum duration are left to the ended event.

        Returns:
            bool: True if this call marked the item completed.
        """
        if not (math.isfinite(position) and math.isfinite(duration)):
            return False
        if duration < config.MIN_COMPLETION_DURATION_SECONDS:
            return False
        if position < completion_threshold(duration):
            return False
        return self.mark_completed(media_id)

    def mark_completed(self, media_id: str) -> bool:
        if self.is_completed(media_id):
            return False
        try:
            self.store.set_item_progress(media_id, {"is_completed": True})
        except PersistenceError as e:
            logger.warning("Could not mark %s completed: %s", media_id, e)
            return False
        self._completed.add(media_id)
        logger.info("Marked %s as completed", media_id)
        return True

    def forget(self, media_id: str) -> None:
        """Drops the cached flag, e.g. after the library reset an item."""
        self._completed.discard(media_id)
