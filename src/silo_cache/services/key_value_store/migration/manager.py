"""Migration manager for the SQLite storage backend.

This module provides database schema migration management.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# Latest schema version known to this code
LATEST_SCHEMA_VERSION = 1

KV_TABLE = "kv_store"


class MigrationManager:
    """Database schema migration manager."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize migration manager.

        Args:
            conn: SQLite database connection
        """
        self.conn = conn
        self._current_version = self._get_current_version()

    def get_current_version(self) -> int:
        """Get current schema version."""
        return self._current_version

    def _get_current_version(self) -> int:
        """Get current schema version from database (0 if not set)."""
        cursor = self.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if cursor.fetchone() is None:
            return 0

        cursor = self.conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row and row[0] is not None else 0

    def create_tables(self) -> None:
        """Create the database schema (v1) if it does not exist yet."""
        schema_sql = f"""
        CREATE TABLE IF NOT EXISTS {KV_TABLE} (
            key TEXT PRIMARY KEY NOT NULL,
            value TEXT NOT NULL,
            updated_at INTEGER NOT NULL,

            CHECK (length(key) > 0)
        );

        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP NOT NULL
        );
        """

        self.conn.executescript(schema_sql)

        if self._current_version == 0:
            self.conn.execute("INSERT OR REPLACE INTO schema_version (version) VALUES (1)")
            self._current_version = 1
            logger.info("Created database schema (v1)")

        if self._current_version < LATEST_SCHEMA_VERSION:
            self.migrate_to(LATEST_SCHEMA_VERSION)

    def migrate_to(self, target_version: int) -> None:
        """Upgrade the database to ``target_version``.

        Args:
            target_version: Target schema version

        Raises:
            ValueError: If target version is invalid or lower than the current one
            RuntimeError: If a migration step fails
        """
        if target_version < 1 or target_version > LATEST_SCHEMA_VERSION:
            msg = f"Invalid target version: {target_version}"
            raise ValueError(msg)

        if target_version == self._current_version:
            logger.debug("Already at target version %d", target_version)
            return

        if target_version < self._current_version:
            msg = (
                f"Downgrade from version {self._current_version} "
                f"to {target_version} is not supported"
            )
            raise ValueError(msg)

        for version in range(self._current_version + 1, target_version + 1):
            try:
                self._apply_migration(version)
            except (sqlite3.Error, FileNotFoundError) as e:
                logger.exception("Failed to apply migration to version %d", version)
                error_msg = f"Migration to version {version} failed: {e!s}"
                raise RuntimeError(error_msg) from e

        logger.info("Successfully upgraded to version %d", target_version)

    def _apply_migration(self, version: int) -> None:
        """Apply a single upgrade step and record it."""
        # Only the initial schema exists so far; later versions add their DDL here.
        msg = f"Migration script for version {version} not found"
        raise FileNotFoundError(msg)

    def get_migration_history(self) -> list[dict[str, int | str]]:
        """Return the applied versions with their timestamps."""
        try:
            cursor = self.conn.execute(
                "SELECT version, applied_at FROM schema_version ORDER BY version"
            )
            return [{"version": row[0], "applied_at": row[1]} for row in cursor.fetchall()]
        except sqlite3.Error:
            return []

    def validate_schema(self) -> bool:
        """Check that the required tables exist and a version is recorded."""
        for table in (KV_TABLE, "schema_version"):
            cursor = self.conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                (table,),
            )
            if cursor.fetchone() is None:
                logger.error("Required table '%s' not found", table)
                return False

        version = self._get_current_version()
        if version < 1:
            logger.error("Invalid schema version: %d", version)
            return False

        logger.debug("Schema validation passed (version %d)", version)
        return True
