from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ACTIVE_USERS_BACKENDS = ("push", "poll")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "TimeLog"
    environment: str = "development"
    host: str = os.getenv("TL_HOST", "127.0.0.1")
    port: int = int(os.getenv("TL_PORT", "8080"))
    log_level: str = os.getenv("TL_LOG_LEVEL", "INFO")

    sqlite_path: Path = Path(os.getenv("TL_SQLITE_PATH", "./data/timelog.db"))

    timezone: str = os.getenv("TZ", "Asia/Jakarta")

    tick_interval_seconds: float = float(os.getenv("TL_TICK_INTERVAL", "1"))
    active_users_backend: str = os.getenv("TL_ACTIVE_USERS_BACKEND", "push")
    active_users_poll_seconds: float = float(os.getenv("TL_ACTIVE_USERS_POLL", "30"))

    log_page_size: int = int(os.getenv("TL_LOG_PAGE_SIZE", "1000"))
    calendar_page_size: int = int(os.getenv("TL_CALENDAR_PAGE_SIZE", "5000"))

    close_sessions_on_shutdown: bool = os.getenv("TL_CLOSE_ON_SHUTDOWN", "true").lower() == "true"

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("active_users_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ACTIVE_USERS_BACKENDS:
            raise ValueError(f"active_users_backend must be one of {', '.join(ACTIVE_USERS_BACKENDS)}")
        return normalized

    @field_validator("log_page_size", "calendar_page_size")
    @classmethod
    def _check_page_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("page sizes must be positive")
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.sqlite_path}"


settings = Settings()

settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
