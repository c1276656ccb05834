"""SQLite 持久化。

说明：
- 对外只暴露 `SQLiteDB/sqlite_db` 单例。
- 具体表操作拆分在 `app/db/sqlite/*.py` 的 mixin 中。
"""

from __future__ import annotations

from app.core.config import settings
from app.db.sqlite.connection import SQLiteConnectionMixin
from app.db.sqlite.logs_repo import SQLiteLogsRepo
from app.db.sqlite.queue_repo import SQLiteQueueRepo
from app.db.sqlite.records_repo import SQLiteRecordsRepo
from app.db.sqlite.schema import SQLiteSchemaMixin


class SQLiteDB(
    SQLiteConnectionMixin,
    SQLiteSchemaMixin,
    SQLiteQueueRepo,
    SQLiteRecordsRepo,
    SQLiteLogsRepo,
):
    _instance = None
    _db_path = settings.db_path

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        self._ensure_data_dir()
        self._init_db()
        self._last_event_cleanup_at = 0.0


sqlite_db = SQLiteDB()
