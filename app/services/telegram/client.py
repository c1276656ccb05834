"""Telegram Bot API 客户端：报告推送（fire-and-forget）与 webhook 管理。"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.services.telegram.errors import TelegramApiError

logger = logging.getLogger(__name__)


class TelegramClient:
    def __init__(
        self,
        *,
        bot_token: str,
        default_chat_id: str = "",
        api_base: str = "https://api.telegram.org",
        timeout_sec: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.bot_token = str(bot_token or "").strip()
        self.default_chat_id = str(default_chat_id or "").strip()
        self.api_base = str(api_base or "").rstrip("/")
        self.timeout_sec = float(timeout_sec)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.bot_token)

    async def _call(self, method: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.bot_token:
            raise TelegramApiError(method, "bot token not configured")
        url = f"{self.api_base}/bot{self.bot_token}/{method}"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout=self.timeout_sec),
                transport=self._transport,
            ) as client:
                resp = await client.post(url, json=payload or {})
        except httpx.HTTPError as exc:
            raise TelegramApiError(method, str(exc) or type(exc).__name__) from exc

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise TelegramApiError(method, f"HTTP {resp.status_code}")
        if resp.status_code >= 400 or not data.get("ok"):
            raise TelegramApiError(method, str(data.get("description") or f"HTTP {resp.status_code}"))
        return data

    async def send_message(self, text: str, *, chat_id: Optional[str | int] = None, parse_mode: str = "HTML") -> bool:
        """推送消息；未配置或失败只记日志，不抛异常。"""
        target = str(chat_id if chat_id is not None else self.default_chat_id).strip()
        if not self.bot_token or not target:
            logger.info("Telegram 未配置，跳过通知")
            return False
        try:
            await self._call("sendMessage", {"chat_id": target, "text": text, "parse_mode": parse_mode})
        except TelegramApiError as exc:
            logger.warning("Telegram 通知失败: %s", exc.message)
            return False
        return True

    async def notify(self, text: str) -> bool:
        return await self.send_message(text)

    async def set_webhook(self, webhook_url: str, *, secret_token: str = "") -> Dict[str, Any]:
        payload: Dict[str, Any] = {"url": str(webhook_url), "allowed_updates": ["message"]}
        if secret_token:
            payload["secret_token"] = secret_token
        data = await self._call("setWebhook", payload)
        logger.info("Telegram webhook 已设置: %s", data.get("description"))
        return data

    async def delete_webhook(self) -> Dict[str, Any]:
        data = await self._call("deleteWebhook")
        logger.info("Telegram webhook 已删除: %s", data.get("description"))
        return data


telegram_client = TelegramClient(
    bot_token=settings.telegram_bot_token,
    default_chat_id=settings.telegram_chat_id,
    api_base=settings.telegram_api_base,
    timeout_sec=settings.telegram_timeout_sec,
)
