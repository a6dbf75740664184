"""Application and logging configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from silo_cache.shared.constants import Application


class AppSettings(BaseModel):
    """Application-level settings (name, version, debug mode)."""

    name: str = Field(default=Application.NAME, description="Application name")
    version: str = Field(default=Application.VERSION, description="Application version")
    debug: bool = Field(default=False, description="Log at DEBUG level regardless of CLI flags")


class LoggingSettings(BaseModel):
    """Logging configuration.

    Console output uses Rich unless ``use_rich_console`` is disabled, in
    which case JSON lines are written. The optional file is always JSON.
    The level itself comes from the CLI flags.
    """

    file: str | None = Field(default=None, description="Optional JSON log file path")
    use_rich_console: bool = Field(default=True, description="Use Rich console output")


__all__ = ["AppSettings", "LoggingSettings"]
