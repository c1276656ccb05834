"""CDN 链接可用性探测（HEAD，单次，不重试）。"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

NULL_URL_SENTINEL = "NULL"


def is_blank_url(url: Optional[str]) -> bool:
    text = str(url or "").strip()
    return not text or text == NULL_URL_SENTINEL


class UrlProber:
    def __init__(
        self,
        *,
        timeout_sec: float = 5.0,
        max_redirects: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout_sec = float(timeout_sec)
        self.max_redirects = int(max_redirects)
        self._transport = transport

    async def probe(self, url: Optional[str]) -> bool:
        """只有 HEAD 返回 200 才算有效；任何异常都视为失效。"""
        if is_blank_url(url):
            return False
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout=self.timeout_sec),
                follow_redirects=True,
                max_redirects=self.max_redirects,
                transport=self._transport,
            ) as client:
                resp = await client.head(str(url).strip())
            return int(resp.status_code) == 200
        except Exception as exc:  # noqa: BLE001
            logger.debug("URL 探测失败: %s", exc)
            return False
