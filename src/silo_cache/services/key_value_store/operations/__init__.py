"""SQLite storage operations.

Separate operation classes for reading, inserting and removing rows.
"""

from silo_cache.services.key_value_store.operations.insert import InsertOperations
from silo_cache.services.key_value_store.operations.query import QueryOperations
from silo_cache.services.key_value_store.operations.update import UpdateOperations

__all__ = ["InsertOperations", "QueryOperations", "UpdateOperations"]
