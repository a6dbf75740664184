"""
silo-cache Constants Module

Centralized constants for the cache, network client, CLI and logging
layers. Import from here rather than from the individual modules.
"""

from .cache import (
    CACHE_SCHEMA_VERSION,
    TTL,
    CacheValidationConstants,
    FetcherConfig,
    KeyStoreConfig,
    PreloaderConfig,
    StalePolicy,
)
from .cli import CLICommands, CLIDefaults, CLIHelp
from .network import HTTPStatusCodes, NetworkConfig
from .system import (
    BASE_DAY_MS,
    BASE_HOUR_MS,
    BASE_MINUTE_MS,
    BASE_SECOND_MS,
    Application,
    FileSystem,
    Logging,
)

__all__ = [
    "BASE_DAY_MS",
    "BASE_HOUR_MS",
    "BASE_MINUTE_MS",
    "BASE_SECOND_MS",
    "CACHE_SCHEMA_VERSION",
    "CLICommands",
    "CLIDefaults",
    "CLIHelp",
    "TTL",
    "Application",
    "CacheValidationConstants",
    "FetcherConfig",
    "FileSystem",
    "HTTPStatusCodes",
    "KeyStoreConfig",
    "Logging",
    "NetworkConfig",
    "PreloaderConfig",
    "StalePolicy",
]
