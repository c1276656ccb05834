"""CDN URL Refresher FastAPI 入口"""
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from app.api import refresh, telegram
from app.core.config import settings
from app.core.errors import install_exception_handlers
from app.core.logger import setup_logging
from app.db.sqlite import sqlite_db
from app.services.refresh.record_kinds import find_missing_columns
from app.services.telegram.client import telegram_client

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Facebook 视频 CDN 链接定时刷新服务",
)
install_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _safe_startup_event(*, action: str, status: str, level: str, message: str, metadata=None) -> None:
    try:
        sqlite_db.create_event_log(
            source="system",
            action=action,
            event="startup",
            status=status,
            level=level,
            message=message,
            metadata=metadata,
        )
    except Exception:  # noqa: BLE001
        logger.warning("写入启动事件失败: %s", action, exc_info=True)


@app.on_event("startup")
async def check_record_kinds() -> None:
    try:
        missing = find_missing_columns(sqlite_db.list_table_columns)
    except Exception as exc:  # noqa: BLE001
        logger.exception("内容表结构检查失败")
        _safe_startup_event(
            action="app.startup.record_kinds",
            status="failed",
            level="ERROR",
            message=f"内容表结构检查失败: {exc}",
        )
        return
    if missing:
        logger.error("内容表缺少必要列: %s", missing)
        _safe_startup_event(
            action="app.startup.record_kinds",
            status="failed",
            level="ERROR",
            message="内容表缺少必要列",
            metadata={"missing": missing},
        )
        return
    _safe_startup_event(
        action="app.startup.record_kinds",
        status="success",
        level="INFO",
        message="内容表结构检查通过",
    )


@app.on_event("startup")
async def register_telegram_webhook() -> None:
    webhook_url = str(settings.telegram_webhook_url or "").strip()
    if not webhook_url or not telegram_client.configured:
        return
    try:
        await telegram_client.set_webhook(webhook_url, secret_token=settings.telegram_webhook_secret)
        _safe_startup_event(
            action="app.startup.telegram_webhook",
            status="success",
            level="INFO",
            message="Telegram webhook 已注册",
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Telegram webhook 注册失败")
        _safe_startup_event(
            action="app.startup.telegram_webhook",
            status="failed",
            level="WARN",
            message=f"Telegram webhook 注册失败: {exc}",
        )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = str(request.headers.get("x-request-id") or uuid4())
    trace_id = str(request.headers.get("x-trace-id") or request_id)
    request.state.request_id = request_id
    request.state.trace_id = trace_id

    start_time = time.time()
    response: Response | None = None
    captured_exc: Exception | None = None
    try:
        response = await call_next(request)
    except Exception as exc:  # noqa: BLE001
        captured_exc = exc
    process_time = time.time() - start_time
    status_code = int(response.status_code) if response is not None else 500
    if response is not None:
        response.headers["X-Request-Id"] = request_id
    logger.info(
        "API访问日志 | %s | %s %s | %s | %.3fs",
        request.client.host if request.client else "unknown",
        request.method,
        request.url.path,
        status_code,
        process_time,
    )

    # 健康检查频率高，不入库
    if request.url.path not in ("/", "/health"):
        duration_ms = int(process_time * 1000)
        is_slow = duration_ms >= int(settings.api_slow_threshold_ms or 2000)
        try:
            sqlite_db.create_event_log(
                source="api",
                action="api.request",
                event="request",
                status="success" if status_code < 400 else "failed",
                level="INFO" if status_code < 400 else "WARN",
                message=f"{request.method} {request.url.path}",
                trace_id=trace_id,
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=duration_ms,
                is_slow=is_slow,
                ip=request.client.host if request.client else "unknown",
                error_type="api_unhandled_exception" if captured_exc is not None else None,
            )
        except Exception:  # noqa: BLE001
            pass
    if captured_exc is not None:
        raise captured_exc
    return response


app.include_router(refresh.router)
app.include_router(telegram.router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
