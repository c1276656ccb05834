"""把解析到的新 URL 写回对应内容表。唯一允许修改内容表的组件。"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from app.services.refresh.record_kinds import get_record_kind
from app.services.refresh.stats import RunStatistics

logger = logging.getLogger(__name__)


class RecordUpdater:
    def __init__(self, db) -> None:
        self._db = db

    def apply(self, record_kind: str, record_id: Any, new_url: str, stats: RunStatistics) -> bool:
        kind = get_record_kind(record_kind)
        if kind is None:
            logger.error("未知的内容表: %s", record_kind)
            return False
        try:
            affected = self._db.update_record_url(kind.table, kind.url_column, record_id, new_url)
        except sqlite3.Error as exc:
            logger.error("更新 %s 失败: id=%s error=%s", kind.table, record_id, exc)
            return False
        if affected <= 0:
            logger.error("更新 %s 失败: id=%s 记录不存在", kind.table, record_id)
            return False
        stats.record_update(kind.name)
        return True
