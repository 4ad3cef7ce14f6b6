from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./cardquota.db"
    database_echo: bool = False
    log_level: str = "INFO"

    # Quota schedule reference calendar
    quota_reference_timezone: str = "Asia/Taipei"

    # Quota refresh sweeper
    quota_refresh_worker_enabled: bool = True
    quota_refresh_interval_seconds: int = 60
    quota_refresh_startup_delay_seconds: float = 5.0
    quota_refresh_error_cooldown_seconds: int = 5 * 60

    # Cron-driven job scheduler (takes over the sweeper when enabled)
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"

    # Tracing
    otel_tracing_enabled: bool = False

    @field_validator("quota_reference_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("quota_refresh_interval_seconds")
    @classmethod
    def _validate_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("quota_refresh_interval_seconds must be positive")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
