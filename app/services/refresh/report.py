"""运行报告文本（Telegram HTML）。"""

from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from app.services.refresh.record_kinds import RECORD_KINDS, RecordKind
from app.services.refresh.stats import ApiCallBudget, RunStatistics

# (bucket, 标题, 列表前缀, 最多展示条数)
FAILURE_SECTIONS = (
    ("not_found", "⚠️ <b>Videos Not Found", "❌", 5),
    ("permission_denied", "🔒 <b>Permission Denied", "🔒", 3),
    ("api_error", "🛑 <b>Other API Errors", "•", 3),
)

STATUS_ALL_UPDATED = "✅ <b>All expired URLs updated successfully!</b>"
STATUS_ALL_VALID = "✅ <b>All URLs are still valid. No updates needed.</b>"


def _utc_text(now: Optional[datetime] = None) -> str:
    value = now or datetime.now(timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def format_duration(seconds: float) -> str:
    total = int(round(max(0.0, float(seconds))))
    return f"{total // 60}m {total % 60}s"


def closing_status_line(stats: RunStatistics) -> Optional[str]:
    if stats.queued == 0 and stats.failed == 0 and stats.updated > 0:
        return STATUS_ALL_UPDATED
    if stats.queued == 0 and stats.total_checked == stats.already_valid:
        return STATUS_ALL_VALID
    if stats.queued > 0:
        return f"💡 <b>Note:</b> {stats.queued} items queued for next 24-hour run."
    return None


def build_start_message() -> str:
    return "🚀 <b>24-Hour URL Update Started</b>\n\nChecking all video URLs for expiration..."


def build_error_message(error: BaseException | str, now: Optional[datetime] = None) -> str:
    value = now or datetime.now(timezone.utc)
    return (
        "❌ <b>URL Update Error</b>\n\n"
        f"Error: {html.escape(str(error))}\n\n"
        f"Time: {value.isoformat(timespec='seconds')}"
    )


def build_report(
    stats: RunStatistics,
    budget: ApiCallBudget,
    *,
    kinds: Iterable[RecordKind] = RECORD_KINDS,
    now: Optional[datetime] = None,
) -> str:
    lines: List[str] = [
        "🔄 <b>CDN URL Update Report (24h Cycle)</b>",
        "━━━━━━━━━━━━━━━━━",
        f"⏰ {_utc_text(now)} UTC",
        "",
        "📊 <b>Summary:</b>",
        f"✅ Total Checked: {stats.total_checked}",
        f"🟢 Already Valid: {stats.already_valid}",
        f"🔄 Successfully Updated: {stats.updated}",
        f"❌ Failed: {stats.failed}",
    ]
    if stats.queued > 0:
        lines.append(f"⏳ Queued for Next Run: {stats.queued}")

    lines.append("")
    lines.append("📋 <b>Updates by Table:</b>")
    for kind in kinds:
        lines.append(f"• {kind.label}: {stats.updated_by_kind.get(kind.name, 0)}")

    lines.append("")
    lines.append(f"📈 <b>API Usage:</b> {budget.used}/{budget.ceiling}")
    lines.append(f"⏱️ <b>Duration:</b> {format_duration(stats.elapsed_seconds)}")

    for bucket, heading, prefix, show in FAILURE_SECTIONS:
        count = int(stats.failure_counts.get(bucket, 0))
        if count <= 0:
            continue
        lines.append("")
        lines.append(f"{heading} ({count}):</b>")
        for item in stats.failures.get(bucket, [])[:show]:
            lines.append(f"  {prefix} {html.escape(item.title)}")
        if count > show:
            lines.append(f"  ... and {count - show} more")

    status_line = closing_status_line(stats)
    if status_line:
        lines.append("")
        lines.append("")
        lines.append(status_line)

    lines.append("")
    lines.append("")
    lines.append("🔄 Next update: 24 hours from now")
    return "\n".join(lines)
