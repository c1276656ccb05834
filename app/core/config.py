"""应用配置"""
from typing import List

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "CdnUrlRefresher"
    app_version: str = "0.1.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3000

    # 触发接口共享密钥（x-secret-key）
    secret_key: str = ""
    db_path: str = "data/cdn_refresh.db"

    facebook_graph_api_base: str = "https://graph.facebook.com/v18.0"
    facebook_access_token: str = ""
    graph_request_timeout_sec: float = 10.0

    # 单次运行的 API 调用上限，必须低于平台窗口限额
    max_api_calls: int = 190
    provider_rate_limit: int = 200

    probe_timeout_sec: float = 5.0
    probe_max_redirects: int = 5

    telegram_api_base: str = "https://api.telegram.org"
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_admin_ids: str = ""
    telegram_webhook_url: str = ""
    telegram_webhook_secret: str = ""
    telegram_timeout_sec: float = 10.0

    failure_sample_limit: int = 50

    log_level: str = "INFO"
    log_file: str = "logs/app.log"
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5

    event_log_retention_days: int = 30
    event_log_cleanup_interval_sec: int = 3600
    api_slow_threshold_ms: int = 2000

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @model_validator(mode="after")
    def check_api_budget(self) -> "Settings":
        if int(self.max_api_calls) < 1:
            raise ValueError("max_api_calls must be >= 1")
        if int(self.max_api_calls) >= int(self.provider_rate_limit):
            raise ValueError("max_api_calls must stay below provider_rate_limit")
        return self

    @property
    def telegram_admin_id_list(self) -> List[str]:
        return [item.strip() for item in str(self.telegram_admin_ids or "").split(",") if item.strip()]


settings = Settings()
