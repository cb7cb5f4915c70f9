from datetime import timedelta

import pytest

from watchstreak.aggregator import DailyAggregator
from watchstreak.exceptions import PersistenceError
from conftest import START


def test_add_time_floors_each_increment(aggregator):
    aggregator.add_time(1.9)
    aggregator.add_time(2.2)
    aggregator.add_time(0.4)

    assert aggregator.daily_total == 3


@pytest.mark.parametrize("bad", [-1, -0.5, float("nan"), float("inf"), "5", None, True, [3]])
def test_add_time_drops_invalid_input(aggregator, bad):
    aggregator.add_time(bad)

    assert aggregator.daily_total == 0
    assert aggregator.pending_seconds == 0


def test_listeners_see_monotonic_totals(aggregator):
    values = []
    unsubscribe = aggregator.subscribe(values.append)

    for delta in (3, 0, 2, -4, 5):
        aggregator.add_time(delta)
    unsubscribe()
    aggregator.add_time(1)

    assert values == [3, 5, 10]
    assert aggregator.daily_total == 11


def test_lifetime_total_is_debounced(aggregator, store, scheduler):
    aggregator.add_time(5)
    assert store.get_user_aggregate().total_seconds == 0

    scheduler.advance(1.5)
    aggregator.add_time(5)
    assert store.get_user_aggregate().total_seconds == 0

    scheduler.advance(0.5)
    aggregate = store.get_user_aggregate()
    assert aggregate.total_seconds == 10
    assert aggregate.last_watched_at == START + timedelta(seconds=2)


def test_steady_ticks_still_write(aggregator, store, scheduler):
    for _ in range(10):
        scheduler.advance(1)
        aggregator.add_time(1)

    assert store.get_user_aggregate().total_seconds >= 8


def test_flush_writes_pending(aggregator, store):
    aggregator.add_time(7)
    aggregator.flush()

    assert store.get_user_aggregate().total_seconds == 7
    assert aggregator.pending_seconds == 0


def test_failed_write_keeps_pending_seconds(aggregator, store):
    original = store.update_user_aggregate

    def fail(patch):
        raise PersistenceError("disk full")

    store.update_user_aggregate = fail
    aggregator.add_time(5)
    aggregator.flush()
    assert aggregator.pending_seconds == 5

    store.update_user_aggregate = original
    aggregator.add_time(3)
    aggregator.flush()

    assert store.get_user_aggregate().total_seconds == 8
    assert aggregator.pending_seconds == 0


def test_load_daily_time_sums_closed_sessions(aggregator, store):
    session = store.create_session("ep1")
    store.close_session(session.id, 300)
    store.create_session("ep2")

    assert aggregator.load_daily_time() == 300


def test_load_never_lowers_in_memory_total(aggregator, store):
    aggregator.add_time(500)
    session = store.create_session("ep1")
    store.close_session(session.id, 300)

    assert aggregator.load_daily_time() == 500


def test_start_loads_today_and_goal(store, scheduler):
    session = store.create_session("ep1")
    store.close_session(session.id, 120)
    store.update_user_aggregate({"daily_goal_seconds": 600})

    aggregator = DailyAggregator(store, scheduler)

    assert aggregator.start() == 120
    assert aggregator.goal_seconds == 600


def test_rollover_resets_total_at_midnight(aggregator, store, scheduler):
    aggregator.add_time(100)
    values = []
    aggregator.subscribe(values.append)

    scheduler.advance(14 * 3600)

    assert scheduler.today() == START.date() + timedelta(days=1)
    assert aggregator.daily_total == 0
    assert values[-1] == 0
    assert store.get_user_aggregate().total_seconds == 100


def test_add_time_after_midnight_starts_new_day(aggregator, scheduler):
    aggregator.add_time(100)
    scheduler.travel_to(START + timedelta(days=1))

    aggregator.add_time(4)

    assert aggregator.daily_total == 4


def test_set_goal_enforces_minimum(aggregator, store):
    assert aggregator.set_goal(10) == 60
    assert aggregator.set_goal(2400) == 2400
    assert store.get_user_aggregate().daily_goal_seconds == 2400


def test_weekly_totals(aggregator, store, scheduler):
    scheduler.travel_to(START - timedelta(days=2))
    session = store.create_session("ep1")
    store.close_session(session.id, 600)
    scheduler.travel_to(START)
    aggregator.add_time(45)

    totals = aggregator.weekly_totals()

    assert len(totals) == 7
    assert totals[0][0] == START.date() - timedelta(days=6)
    assert totals[-1] == (START.date(), 45)
    assert totals[-3] == (START.date() - timedelta(days=2), 600)


def test_stop_cancels_rollover_and_flushes(aggregator, store, scheduler):
    aggregator.add_time(9)
    aggregator.stop()

    assert store.get_user_aggregate().total_seconds == 9
    assert scheduler.pending_timers == 0


def test_goal_crossed_by_large_increment_counts_once(aggregator, store):
    aggregator.add_time(1700)
    assert store.get_user_aggregate().streak_days == 0

    aggregator.add_time(200)
    aggregator.add_time(300)

    assert aggregator.daily_total == 2200
    assert store.get_user_aggregate().streak_days == 1
