"""Streak Evaluator: counts consecutive days on which the daily goal was met."""

import logging
from datetime import date, datetime, time, timedelta

from watchstreak.exceptions import PersistenceError
from watchstreak.interfaces import IProgressStore, IScheduler

logger = logging.getLogger(__name__)


def day_bounds(day: date):
    """Returns [local midnight, next local midnight) for a calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class StreakEvaluator:
    """
    Increments the streak when the daily total crosses the goal.

    Only a below-to-at/above transition counts, and the stored
    last_achieved_date caps it to one increment per calendar day.
    """

    def __init__(self, store: IProgressStore, scheduler: IScheduler):
        self.store = store
        self.scheduler = scheduler

    def achieve_today_if_crossed(self, prev_total: int, new_total: int, goal_seconds: int) -> int:
        """
        Updates the streak if prev_total < goal_seconds <= new_total.

        Returns:
            int: The streak after evaluation.
        """
        if goal_seconds <= 0 or not (prev_total < goal_seconds <= new_total):
            return self.current_streak()
        try:
            return self._achieve_today(goal_seconds)
        except PersistenceError as e:
            logger.warning("Could not update streak: %s", e)
            return 0

    def _achieve_today(self, goal_seconds: int) -> int:
        aggregate = self.store.get_user_aggregate()
        today = self.scheduler.today()
        if aggregate.last_achieved_date == today:
            return aggregate.streak_days

        yesterday = today - timedelta(days=1)
        met_yesterday = aggregate.last_achieved_date == yesterday \
            or self.total_for_day(yesterday) >= goal_seconds
        if aggregate.streak_days == 0 or met_yesterday:
            streak_days = aggregate.streak_days + 1
        else:
            # Yesterday's goal was missed: the streak restarts today
            streak_days = 1

        self.store.update_user_aggregate({
            "streak_days": streak_days,
            "last_achieved_date": today,
        })
        logger.info("Daily goal of %ss reached; streak is now %d day(s)", goal_seconds, streak_days)
        return streak_days

    def total_for_day(self, day: date) -> int:
        start, end = day_bounds(day)
        return self.store.sum_session_seconds(None, start, end)

    def current_streak(self) -> int:
        try:
            return self.store.get_user_aggregate().streak_days
        except PersistenceError as e:
            logger.warning("Could not read streak: %s", e)
            return 0

    def has_achieved_goal_today(self) -> bool:
        try:
            aggregate = self.store.get_user_aggregate()
        except PersistenceError as e:
            logger.warning("Could not read goal: %s", e)
            return False
        if aggregate.last_achieved_date == self.scheduler.today():
            return True
        return self.total_for_day(self.scheduler.today()) >= aggregate.daily_goal_seconds
