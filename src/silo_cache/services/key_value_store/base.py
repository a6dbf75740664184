"""Storage boundary for the KeyStore.

The KeyStore only needs an asynchronous string-to-string store. Anything
that implements ``StorageBackend`` can be injected, which keeps the durable
store swappable in tests and tools.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class StorageBackend(Protocol):
    """Asynchronous persistent key-value store holding serialized JSON strings.

    Every call is atomic at key granularity; there are no cross-key
    transactions.
    """

    async def get_item(self, key: str) -> str | None:
        """Return the stored string for ``key`` or None."""
        ...

    async def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    async def remove_item(self, key: str) -> None:
        """Remove ``key``; removing a missing key is not an error."""
        ...

    async def clear(self) -> None:
        """Remove every key."""
        ...

    async def get_all_keys(self) -> list[str]:
        """Return every stored key."""
        ...

    async def multi_get(self, keys: list[str]) -> list[tuple[str, str | None]]:
        """Return ``(key, value)`` pairs in the order of ``keys``."""
        ...

    async def multi_remove(self, keys: list[str]) -> None:
        """Remove every key in ``keys``."""
        ...


__all__ = ["StorageBackend"]
