"""url_update_queue 表操作（延迟刷新队列）。"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

QUEUE_TERMINAL_STATUSES = ("completed", "failed")


class SQLiteQueueRepo:
    def create_url_update_task(
        self,
        *,
        table_name: str,
        row_id: Any,
        facebook_video_id: str,
        old_url: Optional[str] = None,
        video_title: Optional[str] = None,
    ) -> int:
        now = self._now_str()
        with self.transaction() as cursor:
            cursor.execute(
                '''
                INSERT INTO url_update_queue (
                    table_name, row_id, facebook_video_id, old_url, video_title, status, created_at
                ) VALUES (?, ?, ?, ?, ?, 'pending', ?)
                ''',
                (
                    str(table_name),
                    str(row_id),
                    str(facebook_video_id),
                    old_url,
                    video_title,
                    now,
                ),
            )
            return int(cursor.lastrowid)

    def list_pending_url_update_tasks(self, limit: int) -> List[Dict[str, Any]]:
        safe_limit = int(limit)
        if safe_limit <= 0:
            return []
        return self._fetch_all(
            '''
            SELECT *
            FROM url_update_queue
            WHERE status = 'pending'
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            ''',
            (safe_limit,),
        )

    def get_url_update_task(self, task_id: int) -> Optional[Dict[str, Any]]:
        rows = self._fetch_all('SELECT * FROM url_update_queue WHERE id = ?', (int(task_id),))
        return rows[0] if rows else None

    def finish_url_update_task(self, task_id: int, status: str, error_message: Optional[str] = None) -> Optional[str]:
        """只允许 pending -> completed/failed，返回调用后的实际状态（任务不存在时为 None）。"""
        if status not in QUEUE_TERMINAL_STATUSES:
            raise ValueError(f"invalid terminal status: {status}")
        now = self._now_str()
        with self.transaction() as cursor:
            cursor.execute(
                '''
                UPDATE url_update_queue
                SET status = ?, error_message = ?, processed_at = ?
                WHERE id = ? AND status = 'pending'
                ''',
                (status, error_message, now, int(task_id)),
            )
            if cursor.rowcount > 0:
                return status
            cursor.execute('SELECT status FROM url_update_queue WHERE id = ?', (int(task_id),))
            row = cursor.fetchone()
            return str(row["status"]) if row else None

    def count_url_update_tasks_by_status(self) -> Dict[str, int]:
        rows = self._fetch_all('SELECT status, COUNT(*) AS cnt FROM url_update_queue GROUP BY status')
        return {str(row["status"]): int(row["cnt"] or 0) for row in rows}
