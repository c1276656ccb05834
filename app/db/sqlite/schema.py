"""SQLite schema 初始化与轻量迁移。"""

from __future__ import annotations

import sqlite3
from typing import List


class SQLiteSchemaMixin:
    def _init_db(self):
        conn = self._get_conn()
        cursor = conn.cursor()

        cursor.execute(
            '''
            CREATE TABLE IF NOT EXISTS url_update_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                table_name TEXT NOT NULL,
                row_id TEXT NOT NULL,
                facebook_video_id TEXT NOT NULL,
                old_url TEXT,
                video_title TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                error_message TEXT,
                created_at TIMESTAMP NOT NULL,
                processed_at TIMESTAMP
            )
            '''
        )
        cursor.execute(
            'CREATE INDEX IF NOT EXISTS idx_url_update_queue_status_created '
            'ON url_update_queue(status, created_at, id)'
        )
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_url_update_queue_created ON url_update_queue(created_at)')

        # episodes / movies 由内容系统维护；这里只保证本地与测试库存在同样的列
        cursor.execute(
            '''
            CREATE TABLE IF NOT EXISTS episodes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT,
                video_url TEXT,
                facebook_video_id TEXT
            )
            '''
        )
        cursor.execute(
            '''
            CREATE TABLE IF NOT EXISTS movies (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT,
                "videoUrl" TEXT,
                "facebookVideoId" TEXT
            )
            '''
        )

        cursor.execute(
            '''
            CREATE TABLE IF NOT EXISTS event_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TIMESTAMP NOT NULL,
                source TEXT NOT NULL,
                action TEXT NOT NULL,
                event TEXT,
                status TEXT,
                level TEXT,
                message TEXT,
                trace_id TEXT,
                request_id TEXT,
                method TEXT,
                path TEXT,
                status_code INTEGER,
                duration_ms INTEGER,
                is_slow INTEGER NOT NULL DEFAULT 0,
                ip TEXT,
                resource_type TEXT,
                resource_id TEXT,
                error_type TEXT,
                metadata_json TEXT
            )
            '''
        )
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_event_logs_created ON event_logs(created_at DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_event_logs_source_created ON event_logs(source, created_at DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_event_logs_request_id ON event_logs(request_id)')

        conn.commit()
        conn.close()

    def list_table_columns(self, table_name: str) -> List[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute(f'PRAGMA table_info("{table_name}")').fetchall()
        except sqlite3.Error:
            return []
        finally:
            conn.close()
        return [str(row["name"]) for row in rows]
