"""URL 刷新 HTTP 入口：外部 cron 触发、队列状态、单视频诊断、事件日志。"""

from __future__ import annotations

import hmac
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query

from app.core.config import settings
from app.db.sqlite import sqlite_db
from app.models.refresh import QueueStatusResponse, TriggerResponse, VideoDiagnosticResponse
from app.services.refresh.orchestrator import refresh_orchestrator
from app.services.refresh.resolver import video_resolver
from app.services.refresh.stats import ApiCallBudget

router = APIRouter(tags=["refresh"])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _verify_secret_key(x_secret_key: Optional[str]) -> None:
    expected = str(settings.secret_key or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="触发接口未启用")

    provided = str(x_secret_key or "").strip()
    if not provided:
        raise HTTPException(status_code=401, detail="缺少 x-secret-key")
    if not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="无效的 x-secret-key")


@router.get("/")
async def service_banner():
    return {
        "status": "running",
        "service": "Facebook CDN URL Updater",
        "timestamp": _now_iso(),
        "message": "Service is running. Updates every 24 hours via external cron job.",
    }


@router.post("/update-urls", response_model=TriggerResponse)
async def trigger_update(x_secret_key: Optional[str] = Header(None, alias="x-secret-key")):
    _verify_secret_key(x_secret_key)
    # 忙碌时抛 RefreshBusyError，由全局处理器转成 409
    refresh_orchestrator.start_background(trigger="http")
    return TriggerResponse(
        status="started",
        message="URL update process started",
        timestamp=_now_iso(),
    )


@router.get("/status", response_model=QueueStatusResponse)
async def queue_status():
    summary = refresh_orchestrator.store.summary()
    return QueueStatusResponse(
        pending=summary.pending,
        completed=summary.completed,
        failed=summary.failed,
        running=refresh_orchestrator.is_running,
        last_run=refresh_orchestrator.last_run,
        last_check=_now_iso(),
    )


@router.get("/test-video/{video_id}", response_model=VideoDiagnosticResponse)
async def test_video(
    video_id: str,
    x_secret_key: Optional[str] = Header(None, alias="x-secret-key"),
):
    _verify_secret_key(x_secret_key)
    # 诊断调用不计入任何运行的预算
    result = await video_resolver.resolve(video_id, ApiCallBudget(1))
    return VideoDiagnosticResponse(
        video_id=video_id,
        result=result.to_payload(),
        timestamp=_now_iso(),
    )


@router.get("/logs")
async def list_logs(
    source: Optional[str] = Query(None, max_length=32),
    limit: int = Query(100, ge=1, le=500),
    x_secret_key: Optional[str] = Header(None, alias="x-secret-key"),
):
    _verify_secret_key(x_secret_key)
    items = sqlite_db.list_event_logs(source=source, limit=limit)
    return {"items": items, "count": len(items)}
