"""
silo-cache - Stale-while-revalidate client cache

A durable, namespaced key-value cache with TTL-stamped entries and a
revalidating fetcher that paints cached data first and refreshes it in the
background.
"""

__version__ = "0.1.0"

from .services import (
    CacheEntry,
    CacheKeys,
    FetchOutcome,
    FetchState,
    FetchStatus,
    KeyStore,
    Query,
    RevalidatingFetcher,
)
from .shared.constants import TTL, StalePolicy

__all__ = [
    "TTL",
    "CacheEntry",
    "CacheKeys",
    "FetchOutcome",
    "FetchState",
    "FetchStatus",
    "KeyStore",
    "Query",
    "RevalidatingFetcher",
    "StalePolicy",
]
