"""Schema migration for the SQLite storage backend."""

from silo_cache.services.key_value_store.migration.manager import MigrationManager

__all__ = ["MigrationManager"]
