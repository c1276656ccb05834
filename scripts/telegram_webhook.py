"""注册 / 删除 Telegram webhook"""
import argparse
import asyncio
import os
import sys

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(ROOT_DIR)

from app.core.config import settings
from app.services.telegram.client import telegram_client
from app.services.telegram.errors import TelegramApiError


def main() -> int:
    parser = argparse.ArgumentParser(description="管理 Telegram webhook")
    sub = parser.add_subparsers(dest="command", required=True)
    set_cmd = sub.add_parser("set", help="注册 webhook")
    set_cmd.add_argument("--url", default=settings.telegram_webhook_url, help="默认取 TELEGRAM_WEBHOOK_URL")
    sub.add_parser("delete", help="删除 webhook")
    args = parser.parse_args()

    try:
        if args.command == "set":
            if not args.url:
                print("缺少 webhook 地址", file=sys.stderr)
                return 2
            data = asyncio.run(telegram_client.set_webhook(args.url, secret_token=settings.telegram_webhook_secret))
        else:
            data = asyncio.run(telegram_client.delete_webhook())
    except TelegramApiError as exc:
        print(f"操作失败: {exc}", file=sys.stderr)
        return 1
    print(data)
    return 0


if __name__ == "__main__":
    sys.exit(main())
