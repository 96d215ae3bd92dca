"""Engine settings using Pydantic Settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Query graph engine configuration, loaded from ``QUERYGRAPH_*`` environment variables."""

    # SQL compilation
    default_dialect: str = "postgres"

    # Pagination defaults for per-table listing and graph previews
    default_page_size: int = 100
    preview_limit: int = 5

    # When set, unresolvable filter/having/sort references raise instead of being dropped
    strict_references: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_prefix="QUERYGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get or create the process-wide settings instance."""
    return Settings()
