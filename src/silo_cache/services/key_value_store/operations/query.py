"""Query operations for the SQLite storage backend."""

from __future__ import annotations

import logging

from silo_cache.services.key_value_store.operations.base import BaseOperation

logger = logging.getLogger(__name__)

# SQLite's default host parameter limit is 999 on older builds
_BATCH_SIZE = 500


class QueryOperations(BaseOperation):
    """Read operations."""

    def get(self, key: str) -> str | None:
        """Return the stored value for ``key`` or None."""
        conn = self._validate_connection()
        cursor = conn.execute(f"SELECT value FROM {self.table} WHERE key = ?", (key,))
        row = cursor.fetchone()
        if row is None:
            logger.debug("Storage miss: key=%s", self._preview(key))
            return None
        return row[0]

    def get_many(self, keys: list[str]) -> list[tuple[str, str | None]]:
        """Return ``(key, value)`` pairs in request order."""
        conn = self._validate_connection()
        found: dict[str, str] = {}
        for start in range(0, len(keys), _BATCH_SIZE):
            batch = keys[start : start + _BATCH_SIZE]
            placeholders = ",".join("?" * len(batch))
            cursor = conn.execute(
                f"SELECT key, value FROM {self.table} WHERE key IN ({placeholders})",
                batch,
            )
            found.update(cursor.fetchall())
        return [(key, found.get(key)) for key in keys]

    def keys(self) -> list[str]:
        """Return every stored key."""
        conn = self._validate_connection()
        cursor = conn.execute(f"SELECT key FROM {self.table} ORDER BY key")
        return [row[0] for row in cursor.fetchall()]

    def count(self) -> int:
        """Return the number of stored rows."""
        conn = self._validate_connection()
        cursor = conn.execute(f"SELECT COUNT(*) FROM {self.table}")
        return int(cursor.fetchone()[0])
