import os
import sqlite3

import pytest

from app.db.sqlite import sqlite_db
from app.models.refresh import TaskStatus
from app.services.refresh.queue_store import DeferredWorkStore

pytestmark = pytest.mark.unit


@pytest.fixture()
def temp_db(tmp_path):
    old_db_path = sqlite_db._db_path
    try:
        db_path = tmp_path / "queue-store.db"
        sqlite_db._db_path = str(db_path)
        sqlite_db._ensure_data_dir()
        sqlite_db._init_db()
        sqlite_db._last_event_cleanup_at = 0.0
        yield db_path
    finally:
        sqlite_db._db_path = old_db_path
        if os.path.exists(os.path.dirname(old_db_path)):
            sqlite_db._init_db()


@pytest.fixture()
def store(temp_db):
    del temp_db
    return DeferredWorkStore(sqlite_db)


def _insert_task(created_at: str, video_id: str) -> int:
    with sqlite_db.transaction() as cursor:
        cursor.execute(
            '''
            INSERT INTO url_update_queue (table_name, row_id, facebook_video_id, status, created_at)
            VALUES ('episodes', '1', ?, 'pending', ?)
            ''',
            (video_id, created_at),
        )
        return int(cursor.lastrowid)


def test_enqueue_persists_pending_task(store):
    assert store.enqueue("movies", 7, "fb-7", "https://old/7.mp4", "Movie 7") is True

    tasks = store.drain(10)
    assert len(tasks) == 1
    task = tasks[0]
    assert task.record_kind == "movies"
    assert task.record_id == "7"
    assert task.external_video_id == "fb-7"
    assert task.previous_url == "https://old/7.mp4"
    assert task.display_title == "Movie 7"
    assert task.status == TaskStatus.PENDING
    assert task.processed_at is None


def test_drain_is_fifo_and_bounded(store):
    later = _insert_task("2024-01-02 00:00:00", "later")
    earlier = _insert_task("2024-01-01 00:00:00", "earlier")
    same_second_a = _insert_task("2024-01-03 00:00:00", "a")
    same_second_b = _insert_task("2024-01-03 00:00:00", "b")

    assert [task.id for task in store.drain(10)] == [earlier, later, same_second_a, same_second_b]
    assert [task.external_video_id for task in store.drain(2)] == ["earlier", "later"]
    assert store.drain(0) == []


def test_drain_skips_terminal_tasks(store):
    first = _insert_task("2024-01-01 00:00:00", "first")
    second = _insert_task("2024-01-01 00:00:01", "second")
    assert store.mark_processed(first, TaskStatus.COMPLETED) is True

    assert [task.id for task in store.drain(10)] == [second]


def test_mark_processed_only_moves_pending_to_terminal(store):
    task_id = _insert_task("2024-01-01 00:00:00", "vid")

    assert store.mark_processed(task_id, TaskStatus.FAILED, "Video not found") is True
    row = sqlite_db.get_url_update_task(task_id)
    assert row["status"] == "failed"
    assert row["error_message"] == "Video not found"
    assert row["processed_at"]

    # 已是终态：不回退，也不改写
    assert store.mark_processed(task_id, TaskStatus.COMPLETED) is False
    row = sqlite_db.get_url_update_task(task_id)
    assert row["status"] == "failed"
    assert row["error_message"] == "Video not found"

    with pytest.raises(ValueError):
        store.mark_processed(task_id, TaskStatus.PENDING)


def test_mark_processed_repeated_same_status_is_idempotent(store):
    task_id = _insert_task("2024-01-01 00:00:00", "vid")
    assert store.mark_processed(task_id, "completed") is True
    processed_at = sqlite_db.get_url_update_task(task_id)["processed_at"]

    assert store.mark_processed(task_id, "completed") is True
    assert sqlite_db.get_url_update_task(task_id)["processed_at"] == processed_at


def test_mark_processed_unknown_task(store):
    assert store.mark_processed(99999, TaskStatus.COMPLETED) is False


def test_summary_counts_by_status(store):
    a = _insert_task("2024-01-01 00:00:00", "a")
    b = _insert_task("2024-01-01 00:00:01", "b")
    _insert_task("2024-01-01 00:00:02", "c")
    store.mark_processed(a, TaskStatus.COMPLETED)
    store.mark_processed(b, TaskStatus.FAILED, "boom")

    summary = store.summary()
    assert (summary.pending, summary.completed, summary.failed) == (1, 1, 1)


def test_enqueue_and_drain_swallow_db_errors(monkeypatch, store):
    def _boom(*_args, **_kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(sqlite_db, "create_url_update_task", _boom)
    monkeypatch.setattr(sqlite_db, "list_pending_url_update_tasks", _boom)

    assert store.enqueue("episodes", 1, "vid", None) is False
    assert store.drain(5) == []
