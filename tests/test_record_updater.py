import os
import sqlite3

import pytest

from app.db.sqlite import sqlite_db
from app.services.refresh.record_kinds import RECORD_KINDS, RecordKind, build_record_kinds, find_missing_columns
from app.services.refresh.errors import RecordKindConfigError
from app.services.refresh.stats import RunStatistics
from app.services.refresh.updater import RecordUpdater

pytestmark = pytest.mark.unit


@pytest.fixture()
def temp_db(tmp_path):
    old_db_path = sqlite_db._db_path
    try:
        db_path = tmp_path / "records.db"
        sqlite_db._db_path = str(db_path)
        sqlite_db._ensure_data_dir()
        sqlite_db._init_db()
        sqlite_db._last_event_cleanup_at = 0.0
        yield db_path
    finally:
        sqlite_db._db_path = old_db_path
        if os.path.exists(os.path.dirname(old_db_path)):
            sqlite_db._init_db()


def _seed():
    with sqlite_db.transaction() as cursor:
        cursor.executemany(
            "INSERT INTO episodes (id, title, video_url, facebook_video_id) VALUES (?, ?, ?, ?)",
            [
                (1, "Ep 1", "https://old/1.mp4", "fb-1"),
                (2, "Ep 2", None, "fb-2"),
                (3, "Ep 3", "NULL", "fb-3"),
                (4, "Ep 4", "https://old/4.mp4", None),
            ],
        )
        cursor.execute(
            'INSERT INTO movies (id, title, "videoUrl", "facebookVideoId") VALUES (?, ?, ?, ?)',
            (10, "Movie", "https://old/m.mp4", "fb-m"),
        )


def test_list_trackable_records_filters_ineligible_rows(temp_db):
    del temp_db
    _seed()
    episodes = sqlite_db.list_trackable_records("episodes", "video_url", "facebook_video_id")
    assert [(row["id"], row["external_video_id"]) for row in episodes] == [(1, "fb-1")]

    movies = sqlite_db.list_trackable_records("movies", "videoUrl", "facebookVideoId")
    assert movies[0]["video_url"] == "https://old/m.mp4"


def test_apply_writes_url_column_and_counts_by_kind(temp_db):
    del temp_db
    _seed()
    stats = RunStatistics()
    updater = RecordUpdater(sqlite_db)

    assert updater.apply("movies", "10", "https://new/m.mp4", stats) is True
    assert updater.apply("episodes", 1, "https://new/1.mp4", stats) is True

    rows = sqlite_db._fetch_all('SELECT "videoUrl" AS url FROM movies WHERE id = 10')
    assert rows[0]["url"] == "https://new/m.mp4"
    assert stats.updated_by_kind == {"movies": 1, "episodes": 1}


def test_apply_missing_row_or_unknown_kind_fails(temp_db):
    del temp_db
    stats = RunStatistics()
    updater = RecordUpdater(sqlite_db)

    assert updater.apply("episodes", 404, "https://new.mp4", stats) is False
    assert updater.apply("podcasts", 1, "https://new.mp4", stats) is False
    assert stats.updated_by_kind == {}


def test_apply_db_error_is_not_raised(monkeypatch, temp_db):
    del temp_db

    def _boom(*_args, **_kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(sqlite_db, "update_record_url", _boom)
    stats = RunStatistics()
    assert RecordUpdater(sqlite_db).apply("episodes", 1, "https://new.mp4", stats) is False


def test_record_kinds_match_bootstrap_schema(temp_db):
    del temp_db
    assert [kind.name for kind in RECORD_KINDS] == ["episodes", "movies"]
    assert find_missing_columns(sqlite_db.list_table_columns) == {}


def test_find_missing_columns_reports_absent_columns():
    columns = {"episodes": ["id", "title", "video_url"], "movies": []}
    missing = find_missing_columns(lambda table: columns.get(table, []))
    assert missing["episodes"] == ["facebook_video_id"]
    assert missing["movies"] == ["id", "title", "videoUrl", "facebookVideoId"]


@pytest.mark.parametrize(
    "kinds",
    [
        [RecordKind("bad", "episodes; DROP TABLE x", "video_url", "fb", "Bad")],
        [RecordKind("dup", "a", "u", "e", "A"), RecordKind("dup", "b", "u", "e", "B")],
        [],
    ],
)
def test_build_record_kinds_rejects_invalid_mapping(kinds):
    with pytest.raises(RecordKindConfigError):
        build_record_kinds(kinds)
