"""Update/delete operations for the SQLite storage backend."""

from __future__ import annotations

import logging

from silo_cache.services.key_value_store.operations.base import BaseOperation

logger = logging.getLogger(__name__)


class UpdateOperations(BaseOperation):
    """Delete operations."""

    def delete(self, key: str) -> bool:
        """Delete ``key``.

        Returns:
            True if a row was deleted, False if the key was absent
        """
        conn = self._validate_connection()
        cursor = conn.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.debug("Deleted key=%s", self._preview(key))
        return deleted

    def delete_many(self, keys: list[str]) -> int:
        """Delete every key in ``keys`` and return the number of deleted rows."""
        conn = self._validate_connection()
        cursor = conn.executemany(
            f"DELETE FROM {self.table} WHERE key = ?",
            [(key,) for key in keys],
        )
        return max(cursor.rowcount, 0)

    def delete_all(self) -> int:
        """Delete every row."""
        conn = self._validate_connection()
        cursor = conn.execute(f"DELETE FROM {self.table}")
        deleted_count = cursor.rowcount
        logger.info("Cleared storage: %d rows deleted", deleted_count)
        return deleted_count
