"""Daily Aggregator: tracked seconds since local midnight, across all media kinds."""

import logging
import math
from datetime import date, timedelta
from numbers import Real
from typing import Callable, List, Optional, Tuple

from watchstreak import config
from watchstreak.exceptions import PersistenceError
from watchstreak.interfaces import IProgressStore, IScheduler, ITimerHandle
from watchstreak.listeners import ListenerRegistry
from watchstreak.scheduler import Debouncer
from watchstreak.streak import StreakEvaluator, day_bounds

logger = logging.getLogger(__name__)


class DailyAggregator:
    """
    Keeps the in-memory daily total and mirrors it to the store.

    add_time() updates memory and notifies listeners synchronously; the
    lifetime total and last-watched timestamp follow through a debounced
    write. Within one day the in-memory value never decreases.
    """

    def __init__(self, store: IProgressStore, scheduler: IScheduler,
                 streak: Optional[StreakEvaluator] = None,
                 debounce_seconds: float = config.AGGREGATE_DEBOUNCE_SECONDS,
                 rollover_check_seconds: float = config.ROLLOVER_CHECK_SECONDS):
        self.store = store
        self.scheduler = scheduler
        self.streak = streak
        self.rollover_check_seconds = rollover_check_seconds
        self._daily_total = 0
        self._current_date: date = scheduler.today()
        self._goal_seconds = config.DEFAULT_DAILY_GOAL_SECONDS
        self._pending_seconds = 0
        self._listeners: ListenerRegistry[int] = ListenerRegistry()
        self._writer = Debouncer(scheduler, debounce_seconds, self._write_aggregate)
        self._rollover_handle: Optional[ITimerHandle] = None

    @property
    def daily_total(self) -> int:
        return self._daily_total

    @property
    def goal_seconds(self) -> int:
        return self._goal_seconds

    @property
    def pending_seconds(self) -> int:
        return self._pending_seconds

    # --- Lifecycle ---

    def start(self) -> int:
        """Loads today's total and starts the periodic rollover check."""
        total = self.load_daily_time()
        self._arm_rollover_check()
        return total

    def stop(self) -> None:
        if self._rollover_handle is not None:
            self._rollover_handle.cancel()
            self._rollover_handle = None
        self.flush()

    def _arm_rollover_check(self) -> None:
        self._rollover_handle = self.scheduler.call_later(self.rollover_check_seconds,
                                                          self._on_rollover_timer)

    def _on_rollover_timer(self) -> None:
        self._arm_rollover_check()
        self.check_rollover()

    def check_rollover(self) -> bool:
        """
        Resets the total to 0 and reloads when the local date has changed.

        Returns:
            bool: True if a rollover happened.
        """
        today = self.scheduler.today()
        if today == self._current_date:
            return False
        logger.info("Local date changed from %s to %s; resetting daily total",
                    self._current_date, today)
        self._current_date = today
        self._daily_total = 0
        self.load_daily_time()
        return True

    # --- Accumulation ---

    def add_time(self, delta_seconds) -> None:
        """
        Adds tracked seconds to today's total.

        Non-numeric, non-finite and negative input is dropped without error.
        """
        if isinstance(delta_seconds, bool) or not isinstance(delta_seconds, Real):
            return
        if not math.isfinite(delta_seconds) or delta_seconds < 0:
            return
        increment = math.floor(delta_seconds)
        if increment == 0:
            return

        self.check_rollover()
        prev_total = self._daily_total
        self._daily_total += increment
        self._listeners.notify(self._daily_total)

        if self.streak is not None and self._goal_seconds > 0:
            self.streak.achieve_today_if_crossed(prev_total, self._daily_total, self._goal_seconds)

        self._pending_seconds += increment
        self._writer.trigger()

    def _write_aggregate(self) -> None:
        if self._pending_seconds <= 0:
            return
        pending = self._pending_seconds
        try:
            aggregate = self.store.get_user_aggregate()
            self.store.update_user_aggregate({
                "total_seconds": aggregate.total_seconds + pending,
                "last_watched_at": self.scheduler.now(),
            })
        except PersistenceError as e:
            # Kept pending; the next write carries it
            logger.warning("Could not write lifetime total (%ss pending): %s", pending, e)
            return
        self._pending_seconds -= pending
        logger.debug("Wrote %ss to lifetime total", pending)

    def flush(self) -> None:
        """Writes pending seconds immediately."""
        self._writer.flush()

    # --- Loading ---

    def load_daily_time(self) -> int:
        """
        Recomputes today's total from closed sessions in the store.

        The loaded value only replaces the in-memory one if it is larger, so
        seconds of a still-open session are not lost.
        """
        today = self.scheduler.today()
        if today != self._current_date:
            self._current_date = today
            self._daily_total = 0
        start, end = day_bounds(today)
        try:
            stored_total = self.store.sum_session_seconds(None, start, end)
            self._goal_seconds = self.store.get_user_aggregate().daily_goal_seconds
        except PersistenceError as e:
            logger.warning("Could not load daily total: %s", e)
            return self._daily_total

        self._daily_total = max(self._daily_total, stored_total)
        self._listeners.notify(self._daily_total)
        return self._daily_total

    def refresh(self) -> int:
        return self.load_daily_time()

    def set_goal(self, goal_seconds: int) -> int:
        """Stores a new daily goal (minimum one minute) and returns it."""
        try:
            self.store.update_user_aggregate({"daily_goal_seconds": goal_seconds})
            self._goal_seconds = self.store.get_user_aggregate().daily_goal_seconds
        except PersistenceError as e:
            logger.warning("Could not store daily goal: %s", e)
        return self._goal_seconds

    def weekly_totals(self, days: int = config.HISTORY_DAYS) -> List[Tuple[date, int]]:
        """Returns (day, seconds) for the last `days` days, oldest first, today included."""
        today = self.scheduler.today()
        totals = []
        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            start, end = day_bounds(day)
            try:
                seconds = self.store.sum_session_seconds(None, start, end)
            except PersistenceError as e:
                logger.warning("Could not read totals for %s: %s", day, e)
                seconds = 0
            if day == today:
                seconds = max(seconds, self._daily_total)
            totals.append((day, seconds))
        return totals

    # --- Observers ---

    def subscribe(self, listener: Callable[[int], None]) -> Callable[[], None]:
        return self._listeners.add(listener)
