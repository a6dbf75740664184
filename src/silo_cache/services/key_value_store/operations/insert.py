"""Insert operations for the SQLite storage backend."""

from __future__ import annotations

import logging
import time

from silo_cache.services.key_value_store.operations.base import BaseOperation

logger = logging.getLogger(__name__)


class InsertOperations(BaseOperation):
    """Write operations."""

    def insert(self, key: str, value: str) -> None:
        """Insert or replace ``value`` under ``key``.

        Args:
            key: Storage key
            value: Serialized value
        """
        conn = self._validate_connection()
        conn.execute(
            f"INSERT OR REPLACE INTO {self.table} (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, int(time.time() * 1000)),
        )
        logger.debug("Stored key=%s (%d bytes)", self._preview(key), len(value))
