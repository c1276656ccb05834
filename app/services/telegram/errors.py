"""Telegram Bot API 异常类型。"""


class TelegramApiError(Exception):
    """Bot API 调用失败"""

    def __init__(self, method: str, message: str):
        self.method = str(method)
        self.message = str(message)
        super().__init__(f"Telegram {self.method} failed: {self.message}")
