"""URL 刷新相关模型。"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ResolveErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"


class RefreshTask(BaseModel):
    id: int
    record_kind: str
    record_id: str
    external_video_id: str
    previous_url: Optional[str] = None
    display_title: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    error_message: Optional[str] = None
    created_at: str
    processed_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RefreshTask":
        return cls(
            id=int(row["id"]),
            record_kind=str(row["table_name"]),
            record_id=str(row["row_id"]),
            external_video_id=str(row["facebook_video_id"]),
            previous_url=row.get("old_url"),
            display_title=row.get("video_title"),
            status=TaskStatus(str(row.get("status") or "pending")),
            error_message=row.get("error_message"),
            created_at=str(row.get("created_at") or ""),
            processed_at=row.get("processed_at"),
        )

    @property
    def label(self) -> str:
        return self.display_title or self.external_video_id


class TrackableRecord(BaseModel):
    id: Any
    title: Optional[str] = None
    video_url: Optional[str] = None
    external_video_id: str


class ResolveResult(BaseModel):
    success: bool
    url: Optional[str] = None
    kind: Optional[ResolveErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, url: str) -> "ResolveResult":
        return cls(success=True, url=url)

    @classmethod
    def fail(cls, kind: ResolveErrorKind, message: str) -> "ResolveResult":
        return cls(success=False, kind=kind, message=message)

    def to_payload(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "url": self.url}
        return {"success": False, "kind": self.kind.value if self.kind else None, "message": self.message}


class QueueSummary(BaseModel):
    pending: int = 0
    completed: int = 0
    failed: int = 0


class LastRunInfo(BaseModel):
    trigger: str
    started_at: str
    finished_at: str
    success: bool
    error: Optional[str] = None
    stats: Dict[str, Any] = Field(default_factory=dict)


class TriggerResponse(BaseModel):
    status: str = "started"
    message: str
    timestamp: str


class QueueStatusResponse(BaseModel):
    pending: int
    completed: int
    failed: int
    running: bool
    last_run: Optional[LastRunInfo] = None
    last_check: str
    message: str = "Queue runs every 24 hours"


class VideoDiagnosticResponse(BaseModel):
    video_id: str
    result: Dict[str, Any]
    timestamp: str
