"""Application settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.
Runtime tuning knobs (cache TTLs, rate-limit budget, upstream fetch policy)
are accessed exclusively through this module; never call ``os.getenv``
directly elsewhere in the codebase.

Usage::

    from dubcatalog.config.settings import get_settings

    settings = get_settings()
    ttl = settings.search_cache_ttl
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration backed by environment variables and an optional .env file.

    Every field has a default so the service starts with no configuration at
    all; deployments override only what they need.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Application behaviour
    # ------------------------------------------------------------------

    app_name: str = "Dubbed Catalog Scraper"
    """Human-readable application name shown in the OpenAPI docs."""

    debug: bool = False
    """Include stack traces in 500 responses.  Never True in production."""

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    # ------------------------------------------------------------------
    # Upstream site
    # ------------------------------------------------------------------

    upstream_base_url: str = "https://animehindidubbed.in"
    """Scheme and host of the catalog site, without a trailing slash."""

    fetch_timeout: float = 30.0
    """Per-attempt HTTP timeout in seconds."""

    fetch_max_retries: int = Field(default=3, ge=1)
    """Total number of fetch attempts before giving up with ``FetchError``."""

    fetch_backoff_base: float = 0.5
    """Base delay in seconds; attempt ``n`` waits ``base * 2**n`` before retrying."""

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    cache_backend: Literal["memory", "redis"] = "memory"
    """``memory`` keeps entries in-process; ``redis`` shares them across instances."""

    redis_url: str = "redis://localhost:6379/0"
    """Redis connection URL used when ``cache_backend`` is ``redis``."""

    cache_ttl: int = Field(
        default=600,
        gt=0,
        validation_alias=AliasChoices("CACHE_TTL", "ANIMEHINDI_CACHE_TTL", "cache_ttl"),
    )
    """Default time-to-live in seconds applied to every cache entry class."""

    search_cache_ttl: Optional[int] = Field(default=None, gt=0)
    """TTL for search result pages.  Falls back to ``cache_ttl``."""

    detail_cache_ttl: Optional[int] = Field(default=None, gt=0)
    """TTL for title detail pages.  Falls back to ``cache_ttl``."""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_max: int = Field(
        default=20,
        ge=1,
        validation_alias=AliasChoices(
            "RATE_LIMIT_MAX", "ANIMEHINDI_RATE_LIMIT", "rate_limit_max"
        ),
    )
    """Maximum requests admitted per client within one window."""

    rate_limit_window: int = Field(default=60, gt=0)
    """Rate-limit window length in seconds.  Also sent back as ``retryAfter``."""

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    metrics_enabled: bool = True
    """Expose Prometheus metrics at ``GET /metrics``."""

    @model_validator(mode="after")
    def _default_entry_ttls(self) -> "Settings":
        if self.search_cache_ttl is None:
            self.search_cache_ttl = self.cache_ttl
        if self.detail_cache_ttl is None:
            self.detail_cache_ttl = self.cache_ttl
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    Uses ``functools.lru_cache`` so that Pydantic Settings reads the environment
    and .env file exactly once per process lifetime.  In tests, call
    ``get_settings.cache_clear()`` after patching environment variables.

    Returns:
        Settings: The validated settings object.
    """
    return Settings()
