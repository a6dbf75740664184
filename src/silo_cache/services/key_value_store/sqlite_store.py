"""SQLite storage backend facade.

Durable ``StorageBackend`` built from the modular query/insert/update
operations. The blocking SQLite calls run in a worker thread and are
serialized by a lock, so each call is atomic at key granularity.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

from silo_cache.security.permissions import set_secure_file_permissions
from silo_cache.services.key_value_store.migration.manager import MigrationManager
from silo_cache.services.key_value_store.operations.insert import InsertOperations
from silo_cache.services.key_value_store.operations.query import QueryOperations
from silo_cache.services.key_value_store.operations.update import UpdateOperations
from silo_cache.shared.errors import (
    ApplicationError,
    ErrorCode,
    ErrorContext,
    InfrastructureError,
    create_storage_error,
)
from silo_cache.shared.logging import log_operation_error, log_operation_success

logger = logging.getLogger(__name__)

T = TypeVar("T")

IN_MEMORY = ":memory:"


class SQLiteStorage:
    """SQLite-backed key-value store.

    Uses WAL mode and auto-commit. The schema is created and versioned by
    ``MigrationManager``. A newly created database file gets owner-only
    permissions.

    Example:
        >>> storage = SQLiteStorage(Path("cache.db"))
        >>> await storage.set_item("silo_cache_orders", '{"key": "orders"}')
        >>> await storage.get_item("silo_cache_orders")
        '{"key": "orders"}'
        >>> storage.close()
    """

    def __init__(self, db_path: Path | str) -> None:
        """Open (and create if needed) the database.

        Args:
            db_path: Path to the SQLite database file, or ``":memory:"``

        Raises:
            InfrastructureError: If the database cannot be opened or migrated
        """
        self.db_path = db_path if db_path == IN_MEMORY else Path(db_path)
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._initialize_db()

    def _initialize_db(self) -> None:
        context = ErrorContext(
            operation="initialize_db",
            additional_data={"db_path": str(self.db_path)},
        )
        start = time.perf_counter()

        try:
            db_is_new = False
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                db_is_new = not self.db_path.exists()

            self.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,  # access is serialized by self._lock
                isolation_level=None,  # auto-commit
            )

            if db_is_new:
                try:
                    set_secure_file_permissions(self.db_path)
                except ApplicationError as e:
                    # The store stays usable without the permission change
                    logger.warning(
                        "Failed to set secure permissions for DB file %s: %s",
                        self.db_path,
                        e,
                    )

            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous=NORMAL")

            self._migration = MigrationManager(self.conn)
            self._migration.create_tables()

            self._query_ops = QueryOperations(self.conn)
            self._insert_ops = InsertOperations(self.conn)
            self._update_ops = UpdateOperations(self.conn)

        except (sqlite3.Error, OSError, RuntimeError) as e:
            error = InfrastructureError(
                ErrorCode.STORAGE_UNAVAILABLE,
                f"Failed to initialize SQLite storage: {e!s}",
                context,
                original_error=e,
            )
            log_operation_error(logger, error, operation="initialize_db")
            raise error from e

        log_operation_success(
            logger=logger,
            operation="initialize_db",
            duration_ms=(time.perf_counter() - start) * 1000,
            context=context,
        )

    @property
    def schema_version(self) -> int:
        """Schema version recorded in the database."""
        return self._migration.get_current_version()

    def _execute(
        self,
        func: Callable[..., T],
        *args: Any,
        operation: str,
        write: bool,
        key: str | None = None,
    ) -> T:
        """Run one operation under the lock, wrapping SQLite errors."""
        try:
            with self._lock:
                return func(*args)
        except sqlite3.Error as e:
            raise create_storage_error(
                f"SQLite {operation} failed: {e!s}",
                write=write,
                key=key,
                operation=operation,
                original_error=e,
            ) from e

    async def _run(
        self,
        func: Callable[..., T],
        *args: Any,
        operation: str,
        write: bool,
        key: str | None = None,
    ) -> T:
        return await asyncio.to_thread(
            self._execute,
            func,
            *args,
            operation=operation,
            write=write,
            key=key,
        )

    async def get_item(self, key: str) -> str | None:
        """Return the stored value for ``key``.

        Raises:
            InfrastructureError: STORAGE_READ_FAILED on SQLite errors
        """
        return await self._run(
            self._query_ops.get, key, operation="get_item", write=False, key=key
        )

    async def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``.

        Raises:
            InfrastructureError: STORAGE_WRITE_FAILED on SQLite errors
        """
        await self._run(
            self._insert_ops.insert, key, value, operation="set_item", write=True, key=key
        )

    async def remove_item(self, key: str) -> None:
        await self._run(
            self._update_ops.delete, key, operation="remove_item", write=True, key=key
        )

    async def clear(self) -> None:
        await self._run(self._update_ops.delete_all, operation="clear", write=True)

    async def get_all_keys(self) -> list[str]:
        return await self._run(self._query_ops.keys, operation="get_all_keys", write=False)

    async def multi_get(self, keys: list[str]) -> list[tuple[str, str | None]]:
        return await self._run(
            self._query_ops.get_many, list(keys), operation="multi_get", write=False
        )

    async def multi_remove(self, keys: list[str]) -> None:
        await self._run(
            self._update_ops.delete_many, list(keys), operation="multi_remove", write=True
        )

    async def count(self) -> int:
        """Return the number of stored rows."""
        return await self._run(self._query_ops.count, operation="count", write=False)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
                # Operations holding the old connection now fail cleanly
                for ops in (self._query_ops, self._insert_ops, self._update_ops):
                    ops.conn = None
                logger.debug("SQLite storage closed: %s", self.db_path)

    def __enter__(self) -> SQLiteStorage:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
