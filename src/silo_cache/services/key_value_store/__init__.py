"""Storage backends for the KeyStore."""

from silo_cache.services.key_value_store.base import StorageBackend
from silo_cache.services.key_value_store.memory_store import MemoryStorage
from silo_cache.services.key_value_store.sqlite_store import SQLiteStorage

__all__ = ["MemoryStorage", "SQLiteStorage", "StorageBackend"]
