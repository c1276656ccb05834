"""内容表（episodes / movies）读取与 URL 字段更新。

表名与列名来自固定映射（app.services.refresh.record_kinds），
进入这里之前已经过标识符校验，因此可以直接拼进 SQL。
"""

from __future__ import annotations

from typing import Any, Dict, List


class SQLiteRecordsRepo:
    def list_trackable_records(self, table: str, url_column: str, external_id_column: str) -> List[Dict[str, Any]]:
        return self._fetch_all(
            f'''
            SELECT id, title, "{url_column}" AS video_url, "{external_id_column}" AS external_video_id
            FROM "{table}"
            WHERE "{url_column}" IS NOT NULL
              AND "{external_id_column}" IS NOT NULL
              AND "{url_column}" != 'NULL'
            ORDER BY id ASC
            '''
        )

    def update_record_url(self, table: str, url_column: str, record_id: Any, new_url: str) -> int:
        with self.transaction() as cursor:
            cursor.execute(
                f'UPDATE "{table}" SET "{url_column}" = ? WHERE id = ?',
                (new_url, record_id),
            )
            return int(cursor.rowcount)
