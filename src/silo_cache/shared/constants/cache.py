"""
Cache Configuration Constants

This module provides the TTL tiers, namespacing defaults and validation
limits for the KeyStore and the revalidating fetcher. All durations are in
milliseconds because cache entries are stamped with epoch milliseconds.
"""

from enum import Enum

from .system import (
    BASE_DAY_MS,
    BASE_HOUR_MS,
    BASE_MINUTE_MS,
)

# Bump when the persisted CacheEntry layout changes. Entries written with a
# different version are treated as misses and removed on read.
CACHE_SCHEMA_VERSION = 1


class TTL:
    """TTL tiers in milliseconds.

    SHORT favours freshness over flicker-avoidance (order lists), MEDIUM
    balances the two (tables, vendors), LONG and above favour
    flicker-avoidance and reduced network load (categories, branches).
    DAY is reserved for system configuration.
    """

    SHORT = 1 * BASE_MINUTE_MS
    MEDIUM = 5 * BASE_MINUTE_MS
    LONG = 30 * BASE_MINUTE_MS
    VERY_LONG = BASE_HOUR_MS
    DAY = BASE_DAY_MS
    INFINITE = -1  # manual invalidation only

    DEFAULT = MEDIUM

    @classmethod
    def tiers(cls) -> dict[str, int]:
        """Return the named tiers as a mapping (used by the CLI)."""
        return {
            "short": cls.SHORT,
            "medium": cls.MEDIUM,
            "long": cls.LONG,
            "very_long": cls.VERY_LONG,
            "day": cls.DAY,
            "infinite": cls.INFINITE,
        }


class StalePolicy(str, Enum):
    """What the fetcher does with an expired cache entry."""

    SERVE_STALE = "serve_stale"  # paint cached data, revalidate in background
    REFETCH_STALE = "refetch_stale"  # treat as a miss, foreground fetch


class KeyStoreConfig:
    """KeyStore defaults."""

    NAMESPACE = "silo_cache_"
    MAX_MEMORY_ITEMS = 100
    PERSIST = True


class FetcherConfig:
    """Revalidating fetcher defaults."""

    RETRY_COUNT = 2
    RETRY_DELAY = 1.0  # seconds, doubled per attempt
    STALE_POLICY = StalePolicy.SERVE_STALE


class PreloaderConfig:
    """Data preloader defaults."""

    PRELOAD_INTERVAL = 5 * BASE_MINUTE_MS
    HISTORY_LIMIT = 50
    REQUEST_INTERVAL = 0.1  # seconds between prefetch requests
    PERSONAL_PATTERN_LIMIT = 3

    LAST_PRELOAD_KEY = "preloader_last_preload"
    NAVIGATION_HISTORY_KEY = "preloader_navigation_history"


class CacheValidationConstants:
    """Cache validation constants."""

    MIN_KEY_LENGTH = 1
    MAX_KEY_LENGTH = 512
    KEY_PREVIEW_LENGTH = 50
