"""
Configuration settings for helix-sync.

Uses Pydantic Settings for environment variable management with .env file support.
All variables are prefixed with HELIX_ (e.g. HELIX_STORE_BACKEND=http).
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

HELIX_HOME = Path.home() / ".helix"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HELIX_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Record Store
    # ========================================
    store_backend: Literal["memory", "sql", "http"] = Field(
        default="sql",
        description="Which record store adapter holds the authoritative state",
    )
    database_url: str = Field(
        default=f"sqlite:///{HELIX_HOME / 'state.db'}",
        description="SQLAlchemy connection string for the sql backend",
    )
    api_base_url: str = Field(
        default="http://localhost:3000",
        description="Backend base URL for the http backend",
    )
    api_token: str | None = Field(
        default=None,
        description="Bearer token sent to the backend",
    )
    api_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP request timeout",
    )

    # ========================================
    # Offline Cache
    # ========================================
    cache_dir: Path = Field(
        default=HELIX_HOME / "cache",
        description="Directory holding the per-learner offline copy",
    )

    # ========================================
    # Synchronization
    # ========================================
    sync_interval_seconds: float = Field(
        default=300.0,
        description="Background sync interval (0 syncs only on request)",
    )
    sync_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per store call on transient transport failures",
    )
    sync_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay for exponential backoff between attempts",
    )

    # ========================================
    # Scheduling & Content
    # ========================================
    base_interval_days: float = Field(
        default=1.0,
        gt=0,
        description="Shortest review interval; Incorrect resets to this",
    )
    grouping_size: int = Field(
        default=5,
        ge=1,
        description="Content units per grouping",
    )
    units_per_tube: int = Field(
        default=20,
        ge=1,
        description="Seed content units per tube in the default state",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(
        default="INFO",
        description="loguru level for the CLI sink",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
