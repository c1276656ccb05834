"""执行一次 URL 刷新（供外部 cron 调用）"""
import argparse
import asyncio
import os
import sys

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(ROOT_DIR)

from app.core.logger import setup_logging
from app.services.refresh.orchestrator import refresh_orchestrator


def main() -> int:
    parser = argparse.ArgumentParser(description="执行一次 CDN URL 刷新")
    parser.add_argument("--trigger", default="cron", help="写入运行记录的触发来源")
    args = parser.parse_args()

    setup_logging()
    outcome = asyncio.run(refresh_orchestrator.run(trigger=args.trigger))
    stats = outcome.context.stats
    budget = outcome.context.budget
    print(
        f"checked={stats.total_checked} valid={stats.already_valid} updated={stats.updated} "
        f"failed={stats.failed} queued={stats.queued} api={budget.used}/{budget.ceiling}"
    )
    if not outcome.success:
        print(f"运行失败: {outcome.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
