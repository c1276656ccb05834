"""URL 刷新编排器。

一次运行严格按顺序执行：
1. reset：新建 RunContext（预算 + 统计），推送开始通知
2. drain：优先消费上次延迟的队列任务
3. sweep：按固定顺序扫描各内容表，失效的链接重新解析；预算用尽后剩余记录入队
4. report：汇总报告推送到通知渠道

同一时刻只允许一个运行（所有触发入口共用同一个占用标记）。
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, Tuple

from app.core.config import settings
from app.db.sqlite import sqlite_db
from app.models.refresh import LastRunInfo, TaskStatus, TrackableRecord
from app.services.refresh.errors import RefreshBusyError
from app.services.refresh.prober import UrlProber
from app.services.refresh.queue_store import DeferredWorkStore
from app.services.refresh.record_kinds import RECORD_KINDS, RecordKind
from app.services.refresh.report import build_error_message, build_report, build_start_message
from app.services.refresh.resolver import video_resolver
from app.services.refresh.stats import ApiCallBudget, RunContext, RunStatistics
from app.services.refresh.updater import RecordUpdater
from app.services.task_runtime import spawn
from app.services.telegram.client import telegram_client

logger = logging.getLogger(__name__)

DB_UPDATE_FAILED = "database update failed"

_TAG_PATTERN = re.compile(r"<[^>]*>")


@dataclass
class RunOutcome:
    context: RunContext
    finished_at: datetime
    report: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_info(self) -> LastRunInfo:
        stats = self.context.stats
        payload: Dict[str, Any] = stats.to_dict()
        payload["api_calls_used"] = self.context.budget.used
        payload["api_call_ceiling"] = self.context.budget.ceiling
        return LastRunInfo(
            trigger=self.context.trigger,
            started_at=stats.started_at.isoformat(timespec="seconds"),
            finished_at=self.finished_at.isoformat(timespec="seconds"),
            success=self.success,
            error=self.error,
            stats=payload,
        )


class RefreshOrchestrator:
    def __init__(
        self,
        *,
        db,
        store: DeferredWorkStore,
        prober: UrlProber,
        resolver,
        updater: RecordUpdater,
        notifier,
        max_api_calls: int,
        failure_sample_limit: int = 50,
        kinds: Sequence[RecordKind] = RECORD_KINDS,
    ) -> None:
        self._db = db
        self._store = store
        self._prober = prober
        self._resolver = resolver
        self._updater = updater
        self._notifier = notifier
        self.max_api_calls = int(max_api_calls)
        self.failure_sample_limit = int(failure_sample_limit)
        self._kinds = tuple(kinds)
        self._running = False
        self._last_run: Optional[LastRunInfo] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def store(self) -> DeferredWorkStore:
        return self._store

    @property
    def last_run(self) -> Optional[LastRunInfo]:
        return self._last_run

    def new_context(self, trigger: str) -> RunContext:
        return RunContext(
            trigger=str(trigger or "manual"),
            budget=ApiCallBudget(self.max_api_calls),
            stats=RunStatistics(sample_limit=self.failure_sample_limit),
        )

    def _claim(self, trigger: str) -> None:
        # 检查与置位之间没有 await，在单事件循环内是原子的
        if self._running:
            self._log_event(
                action="refresh.run.busy",
                event="reject",
                status="failed",
                level="WARN",
                message=f"刷新已在运行，拒绝新的触发: trigger={trigger}",
                metadata={"trigger": trigger},
            )
            raise RefreshBusyError(trigger)
        self._running = True

    async def run(self, *, trigger: str = "manual") -> RunOutcome:
        """占用运行标记并在当前协程内完成一次完整运行。"""
        self._claim(trigger)
        return await self._run_and_release(trigger)

    def start_background(self, *, trigger: str) -> asyncio.Task:
        """占用运行标记后立即返回，运行在后台任务中继续。"""
        self._claim(trigger)
        try:
            return spawn(
                self._run_and_release(trigger),
                task_name="refresh.run",
                metadata={"trigger": trigger},
            )
        except Exception:
            self._running = False
            raise

    async def _run_and_release(self, trigger: str) -> RunOutcome:
        try:
            return await self._execute(self.new_context(trigger))
        finally:
            self._running = False

    async def _execute(self, ctx: RunContext) -> RunOutcome:
        logger.info("=== 24 小时 URL 刷新开始 trigger=%s ===", ctx.trigger)
        self._log_event(
            action="refresh.run.start",
            event="start",
            status="running",
            level="INFO",
            message=f"URL 刷新开始: trigger={ctx.trigger}",
            metadata={"trigger": ctx.trigger, "max_api_calls": ctx.budget.ceiling},
        )
        await self._notify(build_start_message())

        try:
            await self._drain_phase(ctx)
            if ctx.budget.exhausted:
                logger.info("队列阶段已用尽 API 预算，跳过全量扫描")
            else:
                logger.info("剩余 API 预算: %d，开始扫描内容表", ctx.budget.remaining)
                await self._sweep_phase(ctx)

            report = build_report(ctx.stats, ctx.budget, kinds=self._kinds)
            logger.info("URL 刷新完成\n%s", _TAG_PATTERN.sub("", report))
            await self._notify(report)
            outcome = RunOutcome(context=ctx, finished_at=datetime.now(timezone.utc), report=report)
            self._log_event(
                action="refresh.run.finish",
                event="finish",
                status="success",
                level="INFO",
                message=(
                    f"URL 刷新完成: checked={ctx.stats.total_checked} updated={ctx.stats.updated} "
                    f"failed={ctx.stats.failed} queued={ctx.stats.queued} api={ctx.budget.used}/{ctx.budget.ceiling}"
                ),
                metadata=outcome.to_info().stats,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("URL 刷新运行异常")
            outcome = RunOutcome(context=ctx, finished_at=datetime.now(timezone.utc), error=str(exc))
            self._log_event(
                action="refresh.run.error",
                event="error",
                status="failed",
                level="ERROR",
                message=f"URL 刷新运行异常: {exc}",
                error_type=type(exc).__name__,
                metadata=outcome.to_info().stats,
            )
            await self._notify(build_error_message(exc))

        self._last_run = outcome.to_info()
        return outcome

    async def _drain_phase(self, ctx: RunContext) -> None:
        tasks = self._store.drain(ctx.budget.ceiling)
        if not tasks:
            logger.info("没有待处理的队列任务")
            return

        logger.info("处理队列任务 %d 条", len(tasks))
        for task in tasks:
            if ctx.budget.exhausted:
                logger.info("API 预算用尽，剩余队列任务留待下次运行")
                break
            ok, message = await self._refresh_one(
                ctx,
                kind=task.record_kind,
                record_id=task.record_id,
                external_id=task.external_video_id,
                title=task.display_title or "Unknown",
            )
            if ok:
                self._store.mark_processed(task.id, TaskStatus.COMPLETED)
                logger.info("[Queue] ✓ Updated: %s", task.label)
            else:
                self._store.mark_processed(task.id, TaskStatus.FAILED, message)
                logger.info("[Queue] ✗ Failed: %s - %s", task.label, message)

    async def _sweep_phase(self, ctx: RunContext) -> None:
        for kind in self._kinds:
            try:
                rows = self._db.list_trackable_records(kind.table, kind.url_column, kind.external_id_column)
            except sqlite3.Error as exc:
                logger.error("读取 %s 失败，跳过: %s", kind.table, exc)
                continue
            records = [
                TrackableRecord(
                    id=row["id"],
                    title=row.get("title"),
                    video_url=row.get("video_url"),
                    external_video_id=str(row["external_video_id"]),
                )
                for row in rows
            ]
            if not records:
                logger.info("%s 没有可检查的视频", kind.table)
                continue

            total = len(records)
            logger.info("%s 共 %d 条视频", kind.table, total)
            for index, record in enumerate(records):
                if ctx.budget.exhausted:
                    remaining = records[index:]
                    logger.info("API 预算用尽，%s 剩余 %d 条写入队列", kind.table, len(remaining))
                    for item in remaining:
                        if self._store.enqueue(kind.name, item.id, item.external_video_id, item.video_url, item.title):
                            ctx.stats.queued += 1
                    break

                ctx.stats.total_checked += 1
                if await self._prober.probe(record.video_url):
                    ctx.stats.already_valid += 1
                    logger.debug("[%d/%d] ✓ Valid: %s", index + 1, total, record.title)
                    continue

                logger.info("[%d/%d] ⚠ Expired: %s", index + 1, total, record.title)
                ok, message = await self._refresh_one(
                    ctx,
                    kind=kind.name,
                    record_id=record.id,
                    external_id=record.external_video_id,
                    title=record.title or "Unknown",
                )
                if ok:
                    logger.info("[%d/%d] ✓ Updated: %s", index + 1, total, record.title)
                else:
                    logger.info("[%d/%d] ✗ Failed: %s - %s", index + 1, total, record.title, message)

    async def _refresh_one(
        self,
        ctx: RunContext,
        *,
        kind: str,
        record_id: Any,
        external_id: str,
        title: str,
    ) -> Tuple[bool, Optional[str]]:
        result = await self._resolver.resolve(external_id, ctx.budget)
        if not result.success:
            ctx.stats.failed += 1
            ctx.stats.record_failure(result.kind, external_id, title)
            return False, result.message
        if not self._updater.apply(kind, record_id, result.url, ctx.stats):
            ctx.stats.failed += 1
            ctx.stats.record_failure("database_error", external_id, title)
            return False, DB_UPDATE_FAILED
        ctx.stats.updated += 1
        return True, None

    async def _notify(self, text: str) -> None:
        try:
            await self._notifier.notify(text)
        except Exception:  # noqa: BLE001
            logger.warning("通知推送异常，已忽略", exc_info=True)

    def _log_event(self, **kwargs: Any) -> None:
        try:
            self._db.create_event_log(source="refresh", **kwargs)
        except Exception:  # noqa: BLE001
            logger.warning("写入事件日志失败: %s", kwargs.get("action"), exc_info=True)


refresh_orchestrator = RefreshOrchestrator(
    db=sqlite_db,
    store=DeferredWorkStore(sqlite_db),
    prober=UrlProber(timeout_sec=settings.probe_timeout_sec, max_redirects=settings.probe_max_redirects),
    resolver=video_resolver,
    updater=RecordUpdater(sqlite_db),
    notifier=telegram_client,
    max_api_calls=settings.max_api_calls,
    failure_sample_limit=settings.failure_sample_limit,
)
