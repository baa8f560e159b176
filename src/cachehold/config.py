"""Configuration module using Pydantic Settings."""

from collections.abc import Callable
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide defaults loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CACHEHOLD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Stores
    cache_dir: Path = Path(".cache")  # Base directory for disk caches
    default_store: str = "memory"  # Store type when a cache config names none
    flush_delay_seconds: float = 1.0  # Quiet period before disk writes

    # Logging
    log_level: str = "INFO"


class CacheConfig(BaseModel):
    """
    Configuration for one cache and its store.

    Durations are seconds; 0 disables the corresponding behavior.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str | None = None
    store: str | None = None  # "memory" or "disk" (None = settings.default_store)

    # Expiration
    time_to_live: float = 0
    time_to_idle: float = 0
    free_delay: float = 0

    read: bool = True
    write: bool = True

    # Disk store
    dir: Path | None = None
    single_file: bool = False
    encoding: str | None = "utf-8"
    flush_delay: float | None = None  # None = settings.flush_delay_seconds
    serialize: Callable[[Any], Any] | None = None
    deserialize: Callable[..., Any] | None = None

    @field_validator("time_to_live", "time_to_idle", "free_delay", mode="before")
    @classmethod
    def _negative_disables(cls, value: Any) -> Any:
        if value is None or (isinstance(value, (int, float)) and value < 0):
            return 0
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for quick access
settings = get_settings()
