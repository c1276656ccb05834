"""单次刷新运行的上下文：API 预算与统计。每次运行新建，不做全局共享。"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from app.models.refresh import ResolveErrorKind

FAILURE_BUCKETS = ("not_found", "permission_denied", "api_error")


def bucket_for(kind: ResolveErrorKind | str | None) -> str:
    value = kind.value if isinstance(kind, ResolveErrorKind) else str(kind or "")
    if value in ("not_found", "permission_denied"):
        return value
    return "api_error"


class ApiCallBudget:
    def __init__(self, ceiling: int) -> None:
        self.ceiling = max(0, int(ceiling))
        self.used = 0

    def consume(self) -> int:
        self.used += 1
        return self.used

    @property
    def remaining(self) -> int:
        return max(0, self.ceiling - self.used)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.ceiling


@dataclass
class FailureEntry:
    external_id: str
    title: str


@dataclass
class RunStatistics:
    sample_limit: int = 50
    total_checked: int = 0
    already_valid: int = 0
    updated: int = 0
    failed: int = 0
    queued: int = 0
    updated_by_kind: Dict[str, int] = field(default_factory=dict)
    failure_counts: Dict[str, int] = field(default_factory=lambda: {name: 0 for name in FAILURE_BUCKETS})
    failures: Dict[str, List[FailureEntry]] = field(default_factory=lambda: {name: [] for name in FAILURE_BUCKETS})
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_monotonic: float = field(default_factory=time.monotonic)

    def record_update(self, kind: str) -> None:
        self.updated_by_kind[kind] = self.updated_by_kind.get(kind, 0) + 1

    def record_failure(self, kind: ResolveErrorKind | str | None, external_id: str, title: str) -> None:
        bucket = bucket_for(kind)
        self.failure_counts[bucket] += 1
        samples = self.failures[bucket]
        if len(samples) < max(0, int(self.sample_limit)):
            samples.append(FailureEntry(external_id=str(external_id), title=str(title or "Unknown")))

    @property
    def elapsed_seconds(self) -> float:
        return max(0.0, time.monotonic() - self.started_monotonic)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_checked": self.total_checked,
            "already_valid": self.already_valid,
            "updated": self.updated,
            "failed": self.failed,
            "queued": self.queued,
            "updated_by_kind": dict(self.updated_by_kind),
            "failure_counts": dict(self.failure_counts),
            "started_at": self.started_at.isoformat(timespec="seconds"),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass
class RunContext:
    trigger: str
    budget: ApiCallBudget
    stats: RunStatistics
