import json
from datetime import datetime, timedelta

import pytest

from watchstreak.domain import MediaItem, MediaKind
from watchstreak.exceptions import PersistenceError
from watchstreak.repository import JsonProgressStore
from conftest import START


def test_state_survives_reload(tmp_path, scheduler):
    path = tmp_path / "progress.json"
    store = JsonProgressStore(path, clock=scheduler.now)
    session = store.create_session("ep1", MediaKind.AUDIO, "desktop")
    store.update_session(session.id, {"seconds_tracked": 42.9, "avg_rate": 1.25})
    store.set_item_progress("ep1", {"last_position_seconds": 99.7, "is_completed": True})
    store.update_user_aggregate({"total_seconds": 500, "streak_days": 3,
                                 "last_achieved_date": START.date()})

    reloaded = JsonProgressStore(path)

    restored = reloaded.get_session(session.id)
    assert restored.media_kind == MediaKind.AUDIO
    assert restored.seconds_tracked == 42
    assert restored.avg_rate == 1.25
    assert restored.started_at == START
    assert restored.is_open
    progress = reloaded.get_item_progress("ep1")
    assert progress.last_position_seconds == 99
    assert progress.is_completed
    aggregate = reloaded.get_user_aggregate()
    assert aggregate.total_seconds == 500
    assert aggregate.streak_days == 3
    assert aggregate.last_achieved_date == START.date()


def test_in_memory_store_writes_nothing(tmp_path):
    store = JsonProgressStore(None)
    store.create_session("ep1")
    assert list(tmp_path.iterdir()) == []


def test_find_open_session_returns_newest(store, scheduler):
    older = store.create_session("ep1")
    scheduler.advance(5)
    newer = store.create_session("ep1")

    assert store.find_open_session("ep1").id == newer.id

    store.close_session(newer.id, 3)
    assert store.find_open_session("ep1").id == older.id
    assert store.find_open_session("other") is None


def test_close_session_only_once(store, scheduler):
    session = store.create_session("ep1")
    scheduler.advance(30)

    assert store.close_session(session.id, 30) is True
    assert store.close_session(session.id, 99) is False
    assert store.close_session("missing", 10) is False

    closed = store.get_session(session.id)
    assert closed.seconds_tracked == 30
    assert closed.ended_at == START + timedelta(seconds=30)


def test_update_session_clamps_rate(store):
    session = store.create_session("ep1")

    store.update_session(session.id, {"avg_rate": 9})
    assert store.get_session(session.id).avg_rate == 4.0
    store.update_session(session.id, {"avg_rate": 0.01})
    assert store.get_session(session.id).avg_rate == 0.25
    assert store.update_session("missing", {"avg_rate": 1}) is False


def test_sum_session_seconds_counts_closed_sessions_in_window(store, scheduler):
    day_start = datetime.combine(START.date(), datetime.min.time())
    video = store.create_session("ep1", MediaKind.VIDEO)
    store.close_session(video.id, 100)
    audio = store.create_session("song", MediaKind.AUDIO)
    store.close_session(audio.id, 40)
    store.create_session("ep2", MediaKind.VIDEO)  # still open

    scheduler.travel_to(START + timedelta(days=1))
    tomorrow = store.create_session("ep3")
    store.close_session(tomorrow.id, 1000)

    window = (day_start, day_start + timedelta(days=1))
    assert store.sum_session_seconds(None, *window) == 140
    assert store.sum_session_seconds(MediaKind.AUDIO, *window) == 40
    assert store.sum_session_seconds(None, day_start + timedelta(days=1),
                                     day_start + timedelta(days=2)) == 1000


def test_sessions_are_scoped_per_user(tmp_path, scheduler):
    path = tmp_path / "progress.json"
    alice = JsonProgressStore(path, user_scope="alice", clock=scheduler.now)
    session = alice.create_session("ep1")
    alice.close_session(session.id, 60)

    bob = JsonProgressStore(path, user_scope="bob", clock=scheduler.now)
    day = datetime.combine(START.date(), datetime.min.time())
    assert bob.sum_session_seconds(None, day, day + timedelta(days=1)) == 0
    assert bob.find_open_session("ep1") is None


def test_daily_goal_has_a_minimum(store):
    assert store.get_user_aggregate().daily_goal_seconds == 1800

    store.update_user_aggregate({"daily_goal_seconds": 10})
    assert store.get_user_aggregate().daily_goal_seconds == 60

    store.update_user_aggregate({"daily_goal_seconds": 900})
    assert store.get_user_aggregate().daily_goal_seconds == 900


def test_corrupt_file_is_moved_aside(tmp_path):
    path = tmp_path / "progress.json"
    path.write_text("{not json", encoding="utf-8")

    store = JsonProgressStore(path)

    assert store.get_user_aggregate().total_seconds == 0
    assert (tmp_path / "progress.json.corrupt").read_text(encoding="utf-8") == "{not json"
    assert not path.exists()


def test_write_failure_raises_persistence_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = JsonProgressStore(blocker / "progress.json")

    with pytest.raises(PersistenceError):
        store.create_session("ep1")


def test_file_layout(store, scheduler):
    store.create_session("ep1")
    data = json.loads(store.storage_file.read_text(encoding="utf-8"))

    assert data["version"] == 1
    assert set(data) == {"version", "items", "sessions", "aggregates"}


def test_library_items_keep_progress(store):
    item = MediaItem(kind=MediaKind.VIDEO, id="ep1", title="Episode 1",
                     duration_seconds=600, source="/media/ep1.mkv")
    store.save_item(item)
    store.set_item_progress("ep1", {"last_position_seconds": 200})

    store.save_item(MediaItem(kind=MediaKind.VIDEO, id="ep1", title="Episode One",
                              source="/media/ep1.mkv"))

    stored = store.get_item("ep1")
    assert stored.title == "Episode One"
    assert stored.duration_seconds == 600
    assert stored.last_position_seconds == 200
    assert [i.id for i in store.list_items()] == ["ep1"]

    store.delete_item("ep1")
    assert store.get_item("ep1") is None


def test_progress_without_catalog_entry_is_not_listed(store):
    store.set_item_progress("orphan", {"last_position_seconds": 5})
    assert store.get_item("orphan") is None
    assert store.list_items() == []


def test_total_seconds_for_item(store):
    for seconds in (10, 20):
        session = store.create_session("ep1")
        store.close_session(session.id, seconds)
    store.create_session("ep1")

    assert store.total_seconds_for_item("ep1") == 30


def test_writes_keep_records_from_another_store(tmp_path, scheduler):
    path = tmp_path / "progress.json"
    first = JsonProgressStore(path, clock=scheduler.now)
    second = JsonProgressStore(path, clock=scheduler.now)

    kept = first.create_session("ep1")
    second.set_item_progress("ep2", {"last_position_seconds": 30})
    other = second.create_session("ep2")
    first.close_session(kept.id, 12)

    reloaded = JsonProgressStore(path)
    assert {s.id for s in reloaded.list_sessions()} == {kept.id, other.id}
    assert reloaded.get_session(kept.id).seconds_tracked == 12
    assert reloaded.get_item_progress("ep2").last_position_seconds == 30
    assert [s.id for s in first.list_open_sessions()] == [other.id]


def test_batch_defers_writes_until_exit(store):
    with store.batch():
        session = store.create_session("ep1")
        store.set_item_progress("ep1", {"last_position_seconds": 9})
        assert not store.storage_file.exists()

    reloaded = JsonProgressStore(store.storage_file)
    assert reloaded.get_session(session.id).is_open
    assert reloaded.get_item_progress("ep1").last_position_seconds == 9
