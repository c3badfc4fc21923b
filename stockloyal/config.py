"""
Application configuration using pydantic-settings.
Built once per process and passed explicitly to every pipeline stage.
"""
from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    log_level: str = "INFO"
    allowed_origins: str = ""  # Comma-separated CORS origins

    # Webhook receiver
    webhook_secret: str = Field(
        default="",
        validation_alias=AliasChoices("STOCKLOYAL_WEBHOOK_SECRET", "WEBHOOK_SECRET"),
    )
    webhook_rate_limit: int = 60  # requests per minute per source IP
    receiver_identity: str = "app.stockloyal.com/webhooks/stockloyal-receiver"
    # Target of POST /api/webhook/test
    webhook_url: str = "https://app.stockloyal.com/webhooks/stockloyal-receiver"

    # File state (audit logs, dedupe markers, rate counters)
    webhook_log_dir: str = "logs"
    log_retention_days: int = 30
    dedupe_retention_days: int = 7
    retention_sweep_interval_seconds: int = 3600

    # "file" or "redis" for dedupe markers + rate counters
    state_backend: str = "file"
    redis_url: str = "redis://localhost:6379/0"

    # Database (empty disables the relational audit sink)
    database_url: str = ""
    database_pool_size: int = 5
    database_max_overflow: int = 5

    # Sentry
    sentry_dsn: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        populate_by_name = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
