"""Cache configuration model.

Settings for the KeyStore and its SQLite storage backend.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from silo_cache.shared.constants import TTL, FileSystem, KeyStoreConfig, StalePolicy


def _default_db_path() -> Path:
    return Path.home() / FileSystem.HOME_DIR / FileSystem.DEFAULT_DB_FILE


class CacheSettings(BaseModel):
    """Cache configuration.

    Controls the storage key namespace, the size of the in-memory LRU layer,
    the default TTL and how the fetcher treats expired entries.
    """

    namespace: str = Field(
        default=KeyStoreConfig.NAMESPACE,
        description="Prefix applied to every storage key",
    )
    db_path: Path = Field(
        default_factory=_default_db_path,
        description="SQLite database file used for durable storage",
    )
    max_memory_items: int = Field(
        default=KeyStoreConfig.MAX_MEMORY_ITEMS,
        gt=0,
        description="Maximum number of entries kept in the memory layer",
    )
    persist: bool = Field(
        default=KeyStoreConfig.PERSIST,
        description="Write entries through to durable storage",
    )
    default_ttl_ms: int = Field(
        default=TTL.DEFAULT,
        description="Default TTL in milliseconds (-1 never expires)",
    )
    stale_policy: StalePolicy = Field(
        default=StalePolicy.SERVE_STALE,
        description="Serve expired entries while revalidating, or refetch them",
    )

    @field_validator("default_ttl_ms")
    @classmethod
    def validate_default_ttl_ms(cls, v: int) -> int:
        """TTL must be positive or the infinite marker."""
        if v != TTL.INFINITE and v <= 0:
            msg = "default_ttl_ms must be positive or -1 (infinite)"
            raise ValueError(msg)
        return v


__all__ = ["CacheSettings"]
