"""Centralized application configuration."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="APP_", env_file=".env", extra="ignore"
    )

    # Canonical + staging database
    database_url: str = "sqlite:///data/podcast_graph.db"
    sqlite_busy_timeout: float = 30.0

    # Bearer token for trigger endpoints (None = all protected calls rejected)
    internal_api_key: str | None = None

    # Logging
    log_level: str = "INFO"

    # Entity resolution
    default_entity_type: str = "Topic"

    # Batch sizing and worker pool
    resolution_batch_size: int = Field(default=100, ge=1)
    resolution_max_workers: int = Field(default=4, ge=1)
    resolution_max_batches: int = Field(default=10, ge=1)

    # Co-mention inference ("obvious" relationships)
    obvious_min_shared_episodes: int = Field(default=1, ge=1)
    obvious_min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    obvious_max_entities_per_episode: int = Field(default=50, ge=2)
    obvious_weight: float = Field(default=0.5, gt=0.0)

    # Read cache TTLs (seconds)
    cache_ttl_seconds: float = 3600.0
    node_cache_ttl_seconds: float = 300.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
