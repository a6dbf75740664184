"""
CLI Configuration Constants

This module contains command names, help strings and exit codes for the
silo-cache command-line interface.
"""

from .system import Application


class CLIDefaults:
    """CLI default values."""

    VERSION = Application.VERSION
    EXIT_SUCCESS = 0
    EXIT_ERROR = 1
    EXIT_USAGE = 2


class CLICommands:
    """CLI command names."""

    STATS = "stats"
    GET = "get"
    SET = "set"
    INVALIDATE = "invalidate"
    CLEAR = "clear"
    PURGE = "purge"
    FETCH = "fetch"
    PRELOAD = "preload"
    TOKEN = "token"


class CLIHelp:
    """CLI help strings."""

    APP_NAME = "silo-cache"
    APP_DESCRIPTION = "silo-cache - inspect and drive the Silo client cache"
    APP_STYLE = "rich"
    VERSION_TEXT = "silo-cache v{version}"

    DB_HELP = "Path to the SQLite cache database"
    STATS_HELP = "Show KeyStore statistics and stored entry counts"
    GET_HELP = "Print the cache entry stored under KEY"
    SET_HELP = "Store a JSON value under KEY"
    INVALIDATE_HELP = "Remove KEY (or every key matching a pattern)"
    CLEAR_HELP = "Remove every namespaced cache entry"
    PURGE_HELP = "Remove expired and outdated cache entries"
    FETCH_HELP = "Load PATH from the API through the revalidating fetcher"
    PRELOAD_HELP = "Preload the core business data into the cache"
    TOKEN_HELP = "Store (or clear) the API auth token used by fetch and preload"
    BUSINESS_ID_HELP = "Business id for business-scoped data"
    FORCE_HELP = "Bypass the cache and always hit the network"
    PATTERN_HELP = "Treat KEY as a regular expression"
    BASE_URL_HELP = "Override the API base URL"
    DATA_KEY_HELP = "Cache only this field of the JSON response"
    CONFIG_HELP = "Path to a TOML configuration file"
    TTL_HELP = "TTL tier name (short, medium, long, very_long, day, infinite) or milliseconds"
