"""Cache entry model.

Defines the persisted ``CacheEntry`` together with its JSON encoding and
freshness rules.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

import orjson

from silo_cache.shared.constants import (
    CACHE_SCHEMA_VERSION,
    TTL,
    CacheValidationConstants,
)
from silo_cache.shared.errors import DomainError, ErrorCode, ErrorContext

__all__ = ["CacheEntry", "copy_payload", "decode_entry", "encode_entry"]

_REQUIRED_FIELDS = ("key", "payload", "stored_at", "ttl", "version")


def copy_payload(payload: Any) -> Any:
    """Independent deep copy of a JSON payload."""
    return orjson.loads(orjson.dumps(payload))


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload stamped with its write time and TTL.

    Attributes:
        key: Cache key (without the storage namespace)
        payload: Decoded JSON value, opaque to the cache
        stored_at: Write time in epoch milliseconds
        ttl: Time-to-live in milliseconds, ``TTL.INFINITE`` never expires
        version: Cache format version the entry was written with

    Example:
        >>> entry = CacheEntry("orders:today", [{"id": 1}], stored_at=1000, ttl=30000)
        >>> entry.is_fresh(now=2000)
        True
    """

    key: str
    payload: Any
    stored_at: int
    ttl: int
    version: int = CACHE_SCHEMA_VERSION

    def __post_init__(self) -> None:
        """Validate fields.

        Raises:
            ValueError: On an empty or oversized key, or a negative TTL or timestamp
        """
        if not self.key or len(self.key) > CacheValidationConstants.MAX_KEY_LENGTH:
            msg = (
                f"key must be 1-{CacheValidationConstants.MAX_KEY_LENGTH} characters, "
                f"got {len(self.key)}"
            )
            raise ValueError(msg)

        if self.ttl < 0 and self.ttl != TTL.INFINITE:
            msg = f"ttl must be non-negative or {TTL.INFINITE}, got {self.ttl}"
            raise ValueError(msg)

        if self.stored_at < 0:
            msg = f"stored_at must be non-negative, got {self.stored_at}"
            raise ValueError(msg)

    @property
    def never_expires(self) -> bool:
        return self.ttl == TTL.INFINITE

    def age(self, now: int) -> int:
        """Milliseconds elapsed since the entry was written."""
        return now - self.stored_at

    def is_fresh(self, now: int) -> bool:
        """Check freshness: ``now - stored_at <= ttl`` or an infinite TTL."""
        return self.never_expires or self.age(now) <= self.ttl

    def is_current_version(self) -> bool:
        return self.version == CACHE_SCHEMA_VERSION

    def detached(self) -> CacheEntry:
        """Copy of the entry whose payload shares no objects with this one."""
        return replace(self, payload=copy_payload(self.payload))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def encode_entry(entry: CacheEntry) -> str:
    """Serialize an entry to a JSON string.

    Raises:
        DomainError: CACHE_SERIALIZATION_ERROR if the payload is not JSON serializable
    """
    try:
        return orjson.dumps(entry.to_dict()).decode("utf-8")
    except TypeError as e:
        raise DomainError(
            ErrorCode.CACHE_SERIALIZATION_ERROR,
            f"Payload is not JSON serializable: {e!s}",
            ErrorContext(operation="encode_entry", key=entry.key),
            original_error=e,
        ) from e


def decode_entry(raw: str | bytes, key: str | None = None) -> CacheEntry:
    """Deserialize a stored JSON string into a CacheEntry.

    Args:
        raw: Stored JSON document
        key: Expected cache key, used for error context

    Raises:
        DomainError: CACHE_CORRUPTED for malformed documents, CACHE_VERSION_MISMATCH
            for entries written by a different cache format version
    """
    context = ErrorContext(operation="decode_entry", key=key)
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise DomainError(
            ErrorCode.CACHE_CORRUPTED,
            f"Cache entry is not valid JSON: {e!s}",
            context,
            original_error=e,
        ) from e

    if not isinstance(data, dict) or any(name not in data for name in _REQUIRED_FIELDS):
        raise DomainError(
            ErrorCode.CACHE_CORRUPTED,
            "Cache entry is missing required fields",
            context,
        )

    if data["version"] != CACHE_SCHEMA_VERSION:
        raise DomainError(
            ErrorCode.CACHE_VERSION_MISMATCH,
            f"Cache entry version {data['version']!r} != {CACHE_SCHEMA_VERSION}",
            context,
        )

    stored_at, ttl = data["stored_at"], data["ttl"]
    if (
        not isinstance(data["key"], str)
        or isinstance(stored_at, bool)
        or isinstance(ttl, bool)
        or not isinstance(stored_at, int)
        or not isinstance(ttl, int)
    ):
        raise DomainError(
            ErrorCode.CACHE_CORRUPTED,
            "Cache entry has fields of the wrong type",
            context,
        )

    try:
        return CacheEntry(
            key=data["key"],
            payload=data["payload"],
            stored_at=stored_at,
            ttl=ttl,
            version=data["version"],
        )
    except ValueError as e:
        raise DomainError(
            ErrorCode.CACHE_CORRUPTED,
            f"Cache entry failed validation: {e!s}",
            context,
            original_error=e,
        ) from e
