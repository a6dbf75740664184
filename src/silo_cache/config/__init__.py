"""silo-cache Configuration Module

Unified access to the configuration models and the settings loader.
"""

from __future__ import annotations

from .loader import SettingsLoader, get_config, load_settings, reload_config
from .models import (
    APISettings,
    AppSettings,
    CacheSettings,
    FetcherSettings,
    LoggingSettings,
    PreloaderSettings,
    Settings,
)

__all__ = [
    "APISettings",
    "AppSettings",
    "CacheSettings",
    "FetcherSettings",
    "LoggingSettings",
    "PreloaderSettings",
    "Settings",
    "SettingsLoader",
    "get_config",
    "load_settings",
    "reload_config",
]
