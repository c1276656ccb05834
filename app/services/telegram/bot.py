"""Telegram 命令机器人：webhook 收到的消息在这里分发。

/update 与 HTTP 触发共用编排器的占用标记，不会并发运行。
"""

from __future__ import annotations

import html
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from app.core.config import settings
from app.services.refresh.errors import RefreshBusyError
from app.services.refresh.orchestrator import RefreshOrchestrator, refresh_orchestrator
from app.services.refresh.queue_store import DeferredWorkStore
from app.services.telegram.client import TelegramClient, telegram_client

logger = logging.getLogger(__name__)

MSG_UNAUTHORIZED = "❌ <b>Unauthorized</b>\n\nYou are not authorized to use this bot."
MSG_UNKNOWN = "❓ Unknown command. Type /help for available commands."
MSG_BUSY = "⚠️ <b>Update Already Running</b>\n\nAn update is already in progress. Please wait for it to complete."
MSG_UPDATE_STARTED = (
    "🚀 <b>Update Started!</b>\n\n🔍 Checking all video URLs...\n⏳ This may take 1-5 minutes\n\n"
    "<i>You'll receive a detailed report when complete.</i>"
)
MSG_UPDATE_DONE = "✅ <b>Update Completed!</b>\n\nCheck the detailed report above for results."
MSG_NO_INFO = (
    "📝 <b>No Update Info</b>\n\nNo updates have been run since the service started.\n\n"
    "Use /update to run your first update!"
)

HELP_TEXT = """📚 <b>Bot Commands</b>

<b>/update</b> - Check and update expired URLs
  • Scans episodes and movies tables
  • Tests each URL validity
  • Updates expired URLs from Facebook
  • Sends detailed report

<b>/status</b> - View queue status
  • Pending/completed/failed counts
  • Current process status

<b>/info</b> - Last update info
  • When last update ran
  • Success/failure status

<b>/help</b> - Show this help

<i>Updates take 1-5 minutes depending on video count.</i>"""


def _parse_command(text: str) -> str:
    head = str(text or "").strip().split(" ", 1)[0].lower()
    # 群组里命令会带 @botname 后缀
    return head.split("@", 1)[0]


class TelegramCommandBot:
    def __init__(
        self,
        *,
        client: TelegramClient,
        orchestrator: RefreshOrchestrator,
        store: DeferredWorkStore,
        admin_ids: Iterable[str] = (),
    ) -> None:
        self._client = client
        self._orchestrator = orchestrator
        self._store = store
        self._admin_ids = {str(item).strip() for item in admin_ids if str(item).strip()}
        self._handlers: Dict[str, Callable[[str], Awaitable[None]]] = {
            "/start": self._handle_start,
            "/update": self._handle_update_command,
            "/status": self._handle_status,
            "/info": self._handle_info,
            "/help": self._handle_help,
        }

    def is_authorized(self, chat_id: Any) -> bool:
        if not self._admin_ids:
            return True
        return str(chat_id) in self._admin_ids

    async def handle_update(self, update: Dict[str, Any]) -> Optional[str]:
        """处理一条 Telegram update，返回识别到的命令（非文本消息返回 None）。"""
        message = update.get("message") if isinstance(update, dict) else None
        if not isinstance(message, dict):
            return None
        text = message.get("text")
        chat = message.get("chat") or {}
        chat_id = chat.get("id") if isinstance(chat, dict) else None
        if not isinstance(text, str) or not text.strip() or chat_id is None:
            return None

        chat_key = str(chat_id)
        command = _parse_command(text)
        logger.info("Telegram 命令: %s chat=%s", command, chat_key)

        if not self.is_authorized(chat_key):
            logger.warning("未授权的 Telegram 访问: chat=%s", chat_key)
            await self._reply(chat_key, MSG_UNAUTHORIZED)
            return command

        handler = self._handlers.get(command)
        if handler is None:
            await self._reply(chat_key, MSG_UNKNOWN)
            return command
        await handler(chat_key)
        return command

    async def _reply(self, chat_id: str, text: str) -> None:
        await self._client.send_message(text, chat_id=chat_id)

    async def _handle_start(self, chat_id: str) -> None:
        await self._reply(
            chat_id,
            "👋 <b>Welcome to Facebook CDN URL Updater Bot!</b>\n\n"
            "This bot helps you manage and update expired Facebook video URLs.\n\n"
            "<b>Available Commands:</b>\n"
            "/update - Check and update all expired URLs\n"
            "/status - View queue status\n"
            "/info - Last update information\n"
            "/help - Show help\n\n"
            f"Your Chat ID: <code>{html.escape(chat_id)}</code>\n\n"
            "<i>Type /update to start checking your videos!</i>",
        )

    async def _handle_update_command(self, chat_id: str) -> None:
        if self._orchestrator.is_running:
            await self._reply(chat_id, MSG_BUSY)
            return
        await self._reply(chat_id, MSG_UPDATE_STARTED)
        try:
            outcome = await self._orchestrator.run(trigger="telegram")
        except RefreshBusyError:
            await self._reply(chat_id, MSG_BUSY)
            return
        if outcome.success:
            await self._reply(chat_id, MSG_UPDATE_DONE)
        else:
            await self._reply(
                chat_id,
                f"❌ <b>Update Error</b>\n\n<code>{html.escape(str(outcome.error))}</code>\n\n"
                "Please check the service logs for details.",
            )

    async def _handle_status(self, chat_id: str) -> None:
        try:
            summary = self._store.summary()
        except Exception as exc:  # noqa: BLE001
            logger.exception("读取队列状态失败")
            await self._reply(chat_id, f"❌ Error: {html.escape(str(exc))}")
            return
        state = (
            "🔄 <b>Status:</b> Update in progress..."
            if self._orchestrator.is_running
            else "💤 <b>Status:</b> Idle"
        )
        await self._reply(
            chat_id,
            "📊 <b>Queue Status</b>\n\n"
            f"⏳ <b>Pending:</b> {summary.pending}\n"
            f"✅ <b>Completed:</b> {summary.completed}\n"
            f"❌ <b>Failed:</b> {summary.failed}\n\n"
            f"{state}\n\n"
            f"⏰ <b>Last Check:</b> {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        )

    async def _handle_info(self, chat_id: str) -> None:
        info = self._orchestrator.last_run
        if info is None:
            await self._reply(chat_id, MSG_NO_INFO)
            return
        lines = [
            "📝 <b>Last Update Info</b>",
            "",
            f"⏰ <b>Time:</b> {info.finished_at}",
            f"🔘 <b>Trigger:</b> {html.escape(info.trigger)}",
            "✅ Completed" if info.success else "❌ Failed",
        ]
        if info.error:
            lines.append("")
            lines.append(f"<b>Error:</b> {html.escape(info.error)}")
        lines.append("")
        lines.append("Type /update to run a new update.")
        await self._reply(chat_id, "\n".join(lines))

    async def _handle_help(self, chat_id: str) -> None:
        await self._reply(chat_id, HELP_TEXT)


command_bot = TelegramCommandBot(
    client=telegram_client,
    orchestrator=refresh_orchestrator,
    store=refresh_orchestrator.store,
    admin_ids=settings.telegram_admin_id_list,
)
