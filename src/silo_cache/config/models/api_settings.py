"""API client configuration model."""

from __future__ import annotations

from pydantic import BaseModel, Field

from silo_cache.shared.constants import NetworkConfig


class APISettings(BaseModel):
    """HTTP API client configuration.

    The bearer token itself is never part of the configuration; it is read
    from storage under ``token_storage_key`` before every request.
    """

    base_url: str = Field(
        default=NetworkConfig.DEFAULT_BASE_URL,
        description="Base URL prepended to every request path",
    )
    timeout: float = Field(
        default=NetworkConfig.READ_TIMEOUT,
        gt=0,
        description="Request timeout in seconds",
    )
    transport_retries: int = Field(
        default=NetworkConfig.TRANSPORT_RETRIES,
        ge=0,
        description="Transport-level retries for 5xx responses",
    )
    backoff_factor: float = Field(
        default=NetworkConfig.BACKOFF_FACTOR,
        ge=0,
        description="urllib3 Retry backoff factor",
    )
    token_storage_key: str = Field(
        default=NetworkConfig.TOKEN_STORAGE_KEY,
        min_length=1,
        description="Storage key holding the auth token",
    )


__all__ = ["APISettings"]
