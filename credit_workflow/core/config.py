from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Credit Workflow API"
    database_url: str = "sqlite:///credit_workflow.db"
    log_level: str = "INFO"

    db_pool_size: int = 5
    db_max_overflow: int = 5

    tx_max_attempts: int = 3
    tx_backoff_seconds: float = 0.05

    escalation_window_hours: int = 4
    admin_escalation_hours: int = 24
    approver_approval_limit: int = 5000

    cron_secret: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CREDITS_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
