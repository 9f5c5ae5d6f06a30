"""
Careflow Configuration

Engine, schedule and digest settings read from CAREFLOW_* environment
variables or a .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class CareflowSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CAREFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = True

    # Reconciliation
    care_plan_batch_size: int = 50
    checkpoint_key_prefix: str = "careflow"
    expired_task_reason: str = "Task expired"
    failed_task_reason: str = "Execution period elapsed"
    dependency_max_depth: int = 20


class ScheduleSettings(BaseSettings):
    """Cron schedules for the periodic reconciliation jobs."""

    model_config = SettingsConfigDict(
        env_prefix="CAREFLOW_SCHEDULE_",
        env_file=".env",
        extra="ignore",
    )

    expire_tasks_cron: str = "0 * * * *"
    fail_tasks_cron: str = "15 * * * *"
    promote_tasks_cron: str = "*/15 * * * *"
    complete_care_plans_cron: str = "30 * * * *"
    closure_sweep_cron: str = "0 2 * * *"
    digest_cron: str = "0 7 * * *"


class DigestSettings(BaseSettings):
    """Clinical digest sweep settings."""

    model_config = SettingsConfigDict(
        env_prefix="CAREFLOW_DIGEST_",
        env_file=".env",
        extra="ignore",
    )

    window_days: int = 7
    edd_code: str = "11778-8"
    anniversary_code: str = "art-start"


class Settings:
    """
    Aggregated settings container.

    Usage:
        from careflow.config import get_settings
        settings = get_settings()
        print(settings.app.care_plan_batch_size)
        print(settings.schedule.expire_tasks_cron)
    """

    def __init__(self):
        self.app = CareflowSettings()
        self.schedule = ScheduleSettings()
        self.digest = DigestSettings()

    @property
    def is_development(self) -> bool:
        return self.app.env == "development"

    @property
    def is_production(self) -> bool:
        return self.app.env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()
