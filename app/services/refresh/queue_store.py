"""延迟刷新队列：预算用尽时未处理的记录写入这里，下次运行优先消费。

任务只会 pending -> completed / failed，终态任务不会被自动重新入队。
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, List, Optional

from app.models.refresh import QueueSummary, RefreshTask, TaskStatus

logger = logging.getLogger(__name__)


class DeferredWorkStore:
    def __init__(self, db) -> None:
        self._db = db

    def enqueue(
        self,
        record_kind: str,
        record_id: Any,
        external_video_id: str,
        previous_url: Optional[str],
        title: Optional[str] = None,
    ) -> bool:
        try:
            self._db.create_url_update_task(
                table_name=record_kind,
                row_id=record_id,
                facebook_video_id=external_video_id,
                old_url=previous_url,
                video_title=title,
            )
            return True
        except sqlite3.Error as exc:
            logger.error("写入刷新队列失败: kind=%s id=%s error=%s", record_kind, record_id, exc)
            return False

    def drain(self, limit: int) -> List[RefreshTask]:
        """按创建时间升序返回至多 limit 条 pending 任务。"""
        if int(limit) <= 0:
            return []
        try:
            rows = self._db.list_pending_url_update_tasks(int(limit))
        except sqlite3.Error as exc:
            logger.error("读取刷新队列失败: %s", exc)
            return []
        return [RefreshTask.from_row(row) for row in rows[: int(limit)]]

    def mark_processed(self, task_id: int, status: TaskStatus | str, error_message: Optional[str] = None) -> bool:
        target = TaskStatus(status)
        if target == TaskStatus.PENDING:
            raise ValueError("pending is not a terminal status")
        try:
            current = self._db.finish_url_update_task(int(task_id), target.value, error_message)
        except sqlite3.Error as exc:
            logger.error("更新队列任务状态失败: task_id=%s error=%s", task_id, exc)
            return False
        if current is None:
            logger.warning("队列任务不存在: task_id=%s", task_id)
            return False
        if current != target.value:
            logger.warning("队列任务已是终态 %s，忽略 %s: task_id=%s", current, target.value, task_id)
            return False
        return True

    def summary(self) -> QueueSummary:
        counts = self._db.count_url_update_tasks_by_status()
        return QueueSummary(
            pending=int(counts.get(TaskStatus.PENDING.value, 0)),
            completed=int(counts.get(TaskStatus.COMPLETED.value, 0)),
            failed=int(counts.get(TaskStatus.FAILED.value, 0)),
        )
