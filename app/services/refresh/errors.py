"""URL 刷新服务异常类型（轻量模块，避免引入重依赖）。"""


class RefreshServiceError(Exception):
    """刷新服务通用异常"""


class RefreshBusyError(RefreshServiceError):
    """已有刷新任务在运行"""

    def __init__(self, trigger: str = ""):
        self.trigger = str(trigger or "")
        super().__init__("URL update already running")


class RecordKindConfigError(RefreshServiceError):
    """内容表映射配置不合法"""
