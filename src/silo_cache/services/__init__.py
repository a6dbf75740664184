"""silo-cache services: storage backends, the KeyStore, the revalidating fetcher and its collaborators."""

from .api_client import ApiClient, ApiResponse, StorageTokenProvider, TokenProvider
from .cache_keys import CacheKeys, build_cache_key
from .cache_models import CacheEntry, decode_entry, encode_entry
from .data_preloader import DataPreloader, NetworkState, PrefetchItem, PrefetchPriority
from .key_store import KeyStore
from .key_value_store import MemoryStorage, SQLiteStorage, StorageBackend
from .revalidating_fetcher import (
    FetchOutcome,
    FetchState,
    Query,
    RevalidatingFetcher,
    payloads_equal,
)
from .state_machine import FetchStateMachine, FetchStatus
from .statistics import CacheMetrics, CacheStatistics

__all__ = [
    "ApiClient",
    "ApiResponse",
    "CacheEntry",
    "CacheKeys",
    "CacheMetrics",
    "CacheStatistics",
    "DataPreloader",
    "FetchOutcome",
    "FetchState",
    "FetchStateMachine",
    "FetchStatus",
    "KeyStore",
    "MemoryStorage",
    "NetworkState",
    "PrefetchItem",
    "PrefetchPriority",
    "Query",
    "RevalidatingFetcher",
    "SQLiteStorage",
    "StorageBackend",
    "StorageTokenProvider",
    "TokenProvider",
    "build_cache_key",
    "decode_entry",
    "encode_entry",
    "payloads_equal",
]
