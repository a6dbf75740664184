"""Base operation class for SQLite storage operations."""

from __future__ import annotations

import sqlite3

from silo_cache.services.key_value_store.migration.manager import KV_TABLE
from silo_cache.shared.constants import CacheValidationConstants


class BaseOperation:
    """Base class for storage operations with shared functionality."""

    table = KV_TABLE

    def __init__(self, conn: sqlite3.Connection | None) -> None:
        """Initialize base operation.

        Args:
            conn: SQLite database connection
        """
        self.conn = conn

    def _validate_connection(self) -> sqlite3.Connection:
        """Return the connection, failing when it has been closed.

        Raises:
            sqlite3.ProgrammingError: If the connection is not available
        """
        if self.conn is None:
            msg = "Database connection not initialized"
            raise sqlite3.ProgrammingError(msg)
        return self.conn

    @staticmethod
    def _preview(key: str) -> str:
        return key[: CacheValidationConstants.KEY_PREVIEW_LENGTH]
