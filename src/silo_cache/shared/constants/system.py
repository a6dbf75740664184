"""
System Configuration Constants

This module contains the base time units, application metadata and
filesystem locations shared by every other constants module.
"""

# =============================================================================
# BASE CONSTANTS (Foundation values used by other constants)
# =============================================================================

# Base time units (milliseconds, matching the cache entry clock)
BASE_MILLISECOND = 1
BASE_SECOND_MS = 1000 * BASE_MILLISECOND
BASE_MINUTE_MS = 60 * BASE_SECOND_MS
BASE_HOUR_MS = 60 * BASE_MINUTE_MS
BASE_DAY_MS = 24 * BASE_HOUR_MS

# Base time units (seconds, for network and asyncio timeouts)
BASE_SECOND = 1


class Application:
    """Application metadata constants."""

    NAME = "silo-cache"
    VERSION = "0.1.0"


class FileSystem:
    """Filesystem locations used by the cache and configuration layers."""

    HOME_DIR = ".silo_cache"
    CONFIG_FILE = "config.toml"
    DEFAULT_DB_FILE = "silo_cache.db"
    ENV_FILE = ".env"

    # Secure permissions for the database file (owner read/write only)
    SECURE_FILE_MODE = 0o600


class Logging:
    """Logging defaults."""

    DEFAULT_LEVEL = "INFO"
    LOGGER_NAME = "silo_cache"
    ENCODING = "utf-8"
