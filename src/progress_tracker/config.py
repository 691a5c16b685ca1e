"""Settings for the progress tracker.

Read from the environment (and an optional ``.env`` file):

    STORE_BACKEND=redis REDIS_URL=redis://localhost:6379 LOG_FORMAT=json
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .sharing import DEFAULT_PUBLIC_ID_LENGTH, MIN_PUBLIC_ID_LENGTH


class Settings(BaseSettings):
    """Progress tracker settings.

    Everything has a default except REDIS_URL, which the redis backend requires.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Logging ===

    service_name: str = Field(
        default="progress-tracker",
        description="Service name for structured logging",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )

    # === Document store ===

    store_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Document store implementation",
    )
    redis_url: str | None = Field(
        default=None,
        description="Redis connection URL (required for the redis backend)",
        examples=["redis://redis:6379"],
    )
    redis_key_prefix: str = Field(
        default="progress",
        min_length=1,
        description="Prefix for the collection hashes and change channels",
    )
    resubscribe_max_attempts: int = Field(
        default=5,
        ge=0,
        description="Resubscribe attempts before a live subscription is reported lost",
    )
    resubscribe_backoff_cap: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound in seconds for the resubscribe backoff",
    )

    # === Sharing ===

    public_id_length: int = Field(
        default=DEFAULT_PUBLIC_ID_LENGTH,
        ge=MIN_PUBLIC_ID_LENGTH,
        le=64,
        description="Length of generated public project identifiers",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @model_validator(mode="after")
    def require_redis_url(self) -> "Settings":
        if self.store_backend == "redis" and not self.redis_url:
            raise ValueError("REDIS_URL is required when STORE_BACKEND=redis")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
