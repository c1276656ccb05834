"""Telegram webhook 入口。"""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Header, HTTPException

from app.core.config import settings
from app.services.task_runtime import spawn
from app.services.telegram.bot import command_bot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telegram", tags=["telegram"])


def _verify_webhook_secret(token: Optional[str]) -> None:
    expected = str(settings.telegram_webhook_secret or "").strip()
    if not expected:
        return
    if not hmac.compare_digest(str(token or "").strip(), expected):
        raise HTTPException(status_code=401, detail="无效的 webhook 密钥")


@router.post("/webhook")
async def telegram_webhook(
    update: Dict[str, Any] = Body(...),
    secret_token: Optional[str] = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    _verify_webhook_secret(secret_token)
    # 立即应答，命令在后台处理
    spawn(
        command_bot.handle_update(update),
        task_name="telegram.update",
        metadata={"update_id": update.get("update_id")},
    )
    return {"ok": True}
