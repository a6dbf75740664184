"""Revalidating fetcher and data preloader configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from silo_cache.shared.constants import FetcherConfig, PreloaderConfig


class FetcherSettings(BaseModel):
    """Retry policy applied to every network fetch issued by the fetcher."""

    retry_count: int = Field(
        default=FetcherConfig.RETRY_COUNT,
        ge=0,
        description="Retries after the first failed attempt",
    )
    retry_delay: float = Field(
        default=FetcherConfig.RETRY_DELAY,
        ge=0,
        description="Initial retry delay in seconds, doubled per attempt",
    )


class PreloaderSettings(BaseModel):
    """Background preload and predictive prefetch settings."""

    interval_ms: int = Field(
        default=PreloaderConfig.PRELOAD_INTERVAL,
        gt=0,
        description="Minimum time between two full preloads",
    )
    history_limit: int = Field(
        default=PreloaderConfig.HISTORY_LIMIT,
        gt=0,
        description="Navigation history entries kept for pattern analysis",
    )
    request_interval: float = Field(
        default=PreloaderConfig.REQUEST_INTERVAL,
        ge=0,
        description="Pause between queued prefetch requests in seconds",
    )


__all__ = ["FetcherSettings", "PreloaderSettings"]
