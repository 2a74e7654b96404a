"""
Drift Engine - Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Drift engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database - Cloud SQL via Unix socket, or any SQLAlchemy async URL
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_USER: str = "drift_user"
    DB_PASSWORD: str = ""
    DB_NAME: str = "drift"
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    CLOUD_SQL_USE_UNIX_SOCKET: bool = False

    # Whole-transaction retries on transient store failures
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_MAX_WAIT: float = 2.0

    # ------------------------------------------------------------------ #
    # Realtime fan-out (Redis pub/sub; empty URL = in-process bus)
    # ------------------------------------------------------------------ #
    REDIS_URL: str = ""
    REALTIME_CHANNEL_PREFIX: str = "drift:events"
    REALTIME_QUEUE_SIZE: int = 256
    REALTIME_DEDUPE_WINDOW: int = 512

    # ------------------------------------------------------------------ #
    # Discovery feed
    # ------------------------------------------------------------------ #
    FEED_DEFAULT_LIMIT: int = 20
    FEED_MAX_LIMIT: int = 100
    DATING_DEFAULT_MIN_AGE: int = 18
    DATING_DEFAULT_MAX_AGE: int = 80

    # ------------------------------------------------------------------ #
    # Messaging
    # ------------------------------------------------------------------ #
    MAX_MESSAGE_LENGTH: int = 4000

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 70.0

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def use_redis(self) -> bool:
        return bool(self.REDIS_URL)

    @field_validator(
        "REALTIME_QUEUE_SIZE",
        "REALTIME_DEDUPE_WINDOW",
        "FEED_DEFAULT_LIMIT",
        "FEED_MAX_LIMIT",
        "MAX_MESSAGE_LENGTH",
        "DB_RETRY_ATTEMPTS",
    )
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return level

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.FEED_DEFAULT_LIMIT > self.FEED_MAX_LIMIT:
            raise ValueError("FEED_DEFAULT_LIMIT cannot exceed FEED_MAX_LIMIT")
        if self.DATING_DEFAULT_MIN_AGE > self.DATING_DEFAULT_MAX_AGE:
            raise ValueError("DATING_DEFAULT_MIN_AGE cannot exceed DATING_DEFAULT_MAX_AGE")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from drift_engine.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
