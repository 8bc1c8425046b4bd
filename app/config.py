"""
DevMatch — Application Configuration

Every tunable is an environment variable (a local ``.env`` file is read too).
Only ``DATABASE_URL`` is required; everything else has a development default.
Call ``get_settings()`` rather than constructing ``Settings`` directly.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the DevMatch service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database – PostgreSQL via asyncpg
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5

    # ------------------------------------------------------------------ #
    # Redis – optional, backs the shared rate limiter
    # ------------------------------------------------------------------ #
    REDIS_URL: str = ""
    RATE_LIMIT_BACKEND: str = "memory"  # memory / redis

    # ------------------------------------------------------------------ #
    # Chat
    # ------------------------------------------------------------------ #
    MESSAGE_MAX_LENGTH: int = 500
    CHANGE_FEED_QUEUE_SIZE: int = 256

    # ------------------------------------------------------------------ #
    # Discovery
    # ------------------------------------------------------------------ #
    DISCOVER_PAGE_SIZE: int = 20

    # ------------------------------------------------------------------ #
    # Avatar images – Google Cloud Storage
    # ------------------------------------------------------------------ #
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""
    PUBLIC_STORAGE_BASE_URL: str = "https://storage.googleapis.com"
    IMAGE_MAX_DIMENSION: int = 1024
    IMAGE_QUALITY: int = 80

    # ------------------------------------------------------------------ #
    # Error tracking – Sentry
    # ------------------------------------------------------------------ #
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # HTTP
    # ------------------------------------------------------------------ #
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator("RATE_LIMIT_BACKEND")
    @classmethod
    def _known_rate_limit_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError(f"RATE_LIMIT_BACKEND must be 'memory' or 'redis', got {v!r}")
        return v

    @field_validator("IMAGE_QUALITY")
    @classmethod
    def _quality_must_be_between_1_and_95(cls, v: int) -> int:
        if not 1 <= v <= 95:
            raise ValueError(f"IMAGE_QUALITY must be between 1 and 95, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide ``Settings``, parsed on first use.

    Tests that need different values patch this function in the module
    under test instead of mutating the cached instance.
    """
    return Settings()  # type: ignore[call-arg]
