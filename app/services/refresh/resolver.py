"""Facebook Graph API 视频源地址解析与错误分类。

分类规则按顺序匹配：先按错误码匹配所有规则，再按消息关键字（不区分大小写）回退。
都不命中时归为 api_error；没有结构化错误体（网络异常 / 非 JSON 响应）归为 network_error。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple

import httpx

from app.core.config import settings
from app.models.refresh import ResolveErrorKind, ResolveResult
from app.services.refresh.stats import ApiCallBudget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorRule:
    kind: ResolveErrorKind
    codes: FrozenSet[int]
    message_markers: Tuple[str, ...]
    message: str


ERROR_RULES: Tuple[ErrorRule, ...] = (
    ErrorRule(ResolveErrorKind.NOT_FOUND, frozenset({100}), ("does not exist",), "Video not found"),
    ErrorRule(ResolveErrorKind.PERMISSION_DENIED, frozenset({10, 200}), ("permission",), "No permission"),
    ErrorRule(ResolveErrorKind.RATE_LIMITED, frozenset({4, 17, 32, 613}), ("rate limit",), "Rate limit reached"),
)


def classify_provider_error(code: Any, message: Any, rules: Tuple[ErrorRule, ...] = ERROR_RULES) -> ResolveResult:
    try:
        code_int: Optional[int] = int(code) if code is not None else None
    except (TypeError, ValueError):
        code_int = None
    text = str(message or "")
    lowered = text.lower()

    if code_int is not None:
        for rule in rules:
            if code_int in rule.codes:
                return ResolveResult.fail(rule.kind, rule.message)
    for rule in rules:
        if any(marker in lowered for marker in rule.message_markers):
            return ResolveResult.fail(rule.kind, rule.message)
    return ResolveResult.fail(ResolveErrorKind.API_ERROR, f"API error: {text}")


def _extract_error_object(payload: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return None
    error_obj = payload.get("error")
    return error_obj if isinstance(error_obj, dict) else None


class FacebookVideoResolver:
    def __init__(
        self,
        *,
        api_base: str,
        access_token: str,
        timeout_sec: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_base = str(api_base or "").rstrip("/")
        self.access_token = str(access_token or "")
        self.timeout_sec = float(timeout_sec)
        self._transport = transport

    async def resolve(self, video_id: str, budget: ApiCallBudget) -> ResolveResult:
        """每次调用恰好消耗 1 次预算，无论成功失败；不做重试。"""
        budget.consume()
        vid = str(video_id or "").strip()
        if not vid:
            return ResolveResult.fail(ResolveErrorKind.API_ERROR, "API error: missing video id")

        endpoint = f"{self.api_base}/{vid}"
        params = {"fields": "source", "access_token": self.access_token}
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout=self.timeout_sec),
                transport=self._transport,
            ) as client:
                resp = await client.get(endpoint, params=params)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Graph API 请求失败: video_id=%s error=%s", vid, exc)
            return ResolveResult.fail(ResolveErrorKind.NETWORK_ERROR, str(exc) or type(exc).__name__)

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        status_code = int(resp.status_code)
        error_obj = _extract_error_object(payload)
        if 200 <= status_code < 300 and error_obj is None:
            source = payload.get("source") if isinstance(payload, dict) else None
            if isinstance(source, str) and source.strip():
                return ResolveResult.ok(source.strip())
            return ResolveResult.fail(ResolveErrorKind.API_ERROR, "No source URL found")

        if error_obj is not None:
            result = classify_provider_error(error_obj.get("code"), error_obj.get("message"))
            logger.info(
                "Graph API 错误: video_id=%s status=%s code=%s kind=%s",
                vid,
                status_code,
                error_obj.get("code"),
                result.kind.value if result.kind else None,
            )
            return result
        return ResolveResult.fail(ResolveErrorKind.NETWORK_ERROR, f"Request failed with status code {status_code}")


video_resolver = FacebookVideoResolver(
    api_base=settings.facebook_graph_api_base,
    access_token=settings.facebook_access_token,
    timeout_sec=settings.graph_request_timeout_sec,
)
