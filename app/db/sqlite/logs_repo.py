"""event_logs 操作：写入、查询与按保留天数清理。"""

from __future__ import annotations

import json
import re
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

_TOKEN_PATTERN = re.compile(r"(access_token=)[^&\s\"']+", re.IGNORECASE)
_BOT_TOKEN_PATTERN = re.compile(r"(/bot)\d+:[A-Za-z0-9_-]+")


def _mask_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = _TOKEN_PATTERN.sub(r"\1***", str(value))
    return _BOT_TOKEN_PATTERN.sub(r"\1***", text)


class SQLiteLogsRepo:
    _last_event_cleanup_at: float

    def _decode_event_log_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(row)
        data["is_slow"] = bool(int(data.get("is_slow") or 0))
        raw = data.pop("metadata_json", None)
        metadata = None
        if raw:
            try:
                payload = json.loads(raw)
                metadata = payload if isinstance(payload, dict) else {"raw": payload}
            except ValueError:
                metadata = {"raw": raw}
        data["metadata"] = metadata
        return data

    def create_event_log(
        self,
        *,
        source: str,
        action: str,
        event: Optional[str] = None,
        status: Optional[str] = None,
        level: Optional[str] = None,
        message: Optional[str] = None,
        trace_id: Optional[str] = None,
        request_id: Optional[str] = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
        status_code: Optional[int] = None,
        duration_ms: Optional[int] = None,
        is_slow: bool = False,
        ip: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        error_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[str] = None,
    ) -> int:
        created_at_text = created_at or self._now_str()
        metadata_json = None
        if metadata is not None:
            metadata_json = _mask_text(json.dumps(metadata, ensure_ascii=False, default=str))

        with self.transaction(immediate=False) as cursor:
            cursor.execute(
                '''
                INSERT INTO event_logs (
                    created_at, source, action, event, status, level, message,
                    trace_id, request_id, method, path, status_code, duration_ms,
                    is_slow, ip, resource_type, resource_id, error_type, metadata_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    created_at_text,
                    str(source or "system").strip().lower(),
                    str(action or "unknown").strip(),
                    str(event).strip() if event is not None else None,
                    str(status).strip().lower() if status is not None else None,
                    str(level).strip().upper() if level is not None else None,
                    _mask_text(message),
                    trace_id,
                    request_id,
                    method,
                    _mask_text(path),
                    int(status_code) if status_code is not None else None,
                    int(duration_ms) if duration_ms is not None else None,
                    1 if is_slow else 0,
                    ip,
                    resource_type,
                    str(resource_id) if resource_id is not None else None,
                    error_type,
                    metadata_json,
                ),
            )
            log_id = int(cursor.lastrowid)
        self._maybe_cleanup_event_logs()
        return log_id

    def list_event_logs(self, *, source: Optional[str] = None, limit: int = 200) -> List[Dict[str, Any]]:
        safe_limit = min(max(int(limit), 1), 500)
        source_text = str(source or "").strip().lower()
        if source_text and source_text != "all":
            rows = self._fetch_all(
                'SELECT * FROM event_logs WHERE source = ? ORDER BY id DESC LIMIT ?',
                (source_text, safe_limit),
            )
        else:
            rows = self._fetch_all('SELECT * FROM event_logs ORDER BY id DESC LIMIT ?', (safe_limit,))
        return [self._decode_event_log_row(row) for row in rows]

    def _maybe_cleanup_event_logs(self) -> None:
        from app.core.config import settings

        retention_days = int(getattr(settings, "event_log_retention_days", 30) or 0)
        cleanup_interval = int(getattr(settings, "event_log_cleanup_interval_sec", 3600) or 3600)
        if retention_days <= 0:
            return

        now_ts = time.time()
        if (now_ts - self._last_event_cleanup_at) < cleanup_interval:
            return
        self._last_event_cleanup_at = now_ts
        self.cleanup_event_logs(retention_days=retention_days)

    def cleanup_event_logs(self, retention_days: int) -> int:
        if retention_days <= 0:
            return 0
        cutoff = datetime.now() - timedelta(days=int(retention_days))
        cutoff_str = cutoff.strftime("%Y-%m-%d %H:%M:%S")
        with self.transaction() as cursor:
            cursor.execute('DELETE FROM event_logs WHERE created_at < ?', (cutoff_str,))
            return int(cursor.rowcount or 0)
