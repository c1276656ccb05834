"""内容表映射：record kind -> 表名 / URL 列 / 外部视频 ID 列。

映射是固定表，模块加载时做一次静态校验；启动时再对照数据库实际列校验一次。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from app.services.refresh.errors import RecordKindConfigError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class RecordKind:
    name: str
    table: str
    url_column: str
    external_id_column: str
    label: str


def build_record_kinds(kinds: Iterable[RecordKind]) -> Tuple[RecordKind, ...]:
    result: List[RecordKind] = []
    seen = set()
    for kind in kinds:
        for value in (kind.table, kind.url_column, kind.external_id_column):
            if not _IDENTIFIER.match(value or ""):
                raise RecordKindConfigError(f"invalid identifier for record kind {kind.name!r}: {value!r}")
        if kind.name in seen:
            raise RecordKindConfigError(f"duplicate record kind: {kind.name}")
        seen.add(kind.name)
        result.append(kind)
    if not result:
        raise RecordKindConfigError("no record kinds configured")
    return tuple(result)


# 顺序即扫描顺序
RECORD_KINDS: Tuple[RecordKind, ...] = build_record_kinds(
    [
        RecordKind(
            name="episodes",
            table="episodes",
            url_column="video_url",
            external_id_column="facebook_video_id",
            label="Episodes",
        ),
        RecordKind(
            name="movies",
            table="movies",
            url_column="videoUrl",
            external_id_column="facebookVideoId",
            label="Movies",
        ),
    ]
)

_BY_NAME: Dict[str, RecordKind] = {kind.name: kind for kind in RECORD_KINDS}


def get_record_kind(name: str) -> Optional[RecordKind]:
    return _BY_NAME.get(str(name or "").strip())


def find_missing_columns(list_columns, kinds: Iterable[RecordKind] = RECORD_KINDS) -> Dict[str, List[str]]:
    """对照数据库列，返回 {kind: [缺失列]}；list_columns(table) -> List[str]。"""
    missing: Dict[str, List[str]] = {}
    for kind in kinds:
        columns = set(list_columns(kind.table) or [])
        wanted = ["id", "title", kind.url_column, kind.external_id_column]
        absent = [column for column in wanted if column not in columns]
        if absent:
            missing[kind.name] = absent
    return missing
