"""
Application Configuration

This module provides type-safe configuration loading using Pydantic settings.
Environment variables are loaded from .env file and validated.

Usage:
    from microflash.config import settings

    # Access settings
    db_url = settings.DATABASE_URL
    window = settings.SPRINT_RESUME_WINDOW_MINUTES
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "MicroFlash"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "microflash"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "microflash"
    # Overrides the PostgreSQL URL when set (e.g. sqlite+aiosqlite:///./dev.db)
    DATABASE_URL_OVERRIDE: str = ""

    @property
    def DATABASE_URL(self) -> str:
        """Async database connection URL."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # FSRS memory model
    FSRS_DEFAULT_RETENTION: float = 0.9
    FSRS_MAX_INTERVAL_DAYS: int = 36500  # 100 years
    FSRS_RETRY_MINUTES: int = 10  # Short retry after an AGAIN grade

    # Sprints
    SPRINT_RESUME_WINDOW_MINUTES: int = 30
    SPRINT_ABANDON_SNOOZE_MINUTES: int = 120
    SPRINT_DEFAULT_SIZE: int = 5
    SPRINT_MIN_SIZE: int = 3
    SPRINT_MAX_SIZE: int = 10

    # Reminder notifications
    NOTIFICATION_TICK_MINUTES: int = 15
    NOTIFICATION_WINDOW_MINUTES: int = 7  # +/- around now
    NOTIFICATION_RECENT_MINUTES: int = 30  # Don't re-notify a card within this
    NOTIFICATION_MIN_COOLDOWN_MINUTES: int = 120
    NOTIFICATION_DEFAULT_MAX_PER_DAY: int = 10
    OVERDUE_THRESHOLD_HOURS: int = 24

    # Expo push delivery
    EXPO_ACCESS_TOKEN: str = ""
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    EXPO_TIMEOUT_SECONDS: float = 30.0


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()


@lru_cache()
def load_yaml_config() -> dict[str, Any]:
    """Load application configuration from config/default.yaml."""
    config_path = Path(__file__).parent.parent.parent / "config" / "default.yaml"

    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


yaml_config: dict[str, Any] = load_yaml_config()
