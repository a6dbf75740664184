"""Namespaced, TTL-aware key-value cache.

The KeyStore keeps a least-recently-used memory layer in front of an
injected ``StorageBackend``. Storage failures never reach the caller: a
failed or undecodable read is a miss and a failed write is logged while the
memory layer keeps the new value.

Payloads are copied on the way in and on the way out, so callers never
share objects with the memory layer.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, TypeVar

from silo_cache.services.cache_models import CacheEntry, decode_entry, encode_entry
from silo_cache.services.key_value_store.base import StorageBackend
from silo_cache.services.statistics import CacheStatistics
from silo_cache.shared.constants import (
    TTL,
    CacheValidationConstants,
    KeyStoreConfig,
)
from silo_cache.shared.errors import (
    DomainError,
    ErrorCode,
    SiloCacheError,
    create_storage_error,
    create_validation_error,
)
from silo_cache.shared.logging import log_operation_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], int]
InvalidationCallback = Callable[[], None]


def epoch_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class KeyStore:
    """Durable, namespaced key-value cache with TTL-stamped entries.

    Args:
        storage: Durable storage backend
        namespace: Prefix applied to every storage key
        max_memory_items: Capacity of the memory layer
        persist: Write through to ``storage``; when False the store is memory only
        clock: Returns the current time in epoch milliseconds
        statistics: Counter sink, a private one is created when omitted

    Example:
        >>> store = KeyStore(MemoryStorage())
        >>> await store.set("orders:today", [{"id": 1}], ttl=TTL.SHORT)
        >>> await store.get("orders:today")
        [{'id': 1}]
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        namespace: str = KeyStoreConfig.NAMESPACE,
        max_memory_items: int = KeyStoreConfig.MAX_MEMORY_ITEMS,
        persist: bool = KeyStoreConfig.PERSIST,
        clock: Clock | None = None,
        statistics: CacheStatistics | None = None,
    ) -> None:
        if max_memory_items < 1:
            msg = f"max_memory_items must be at least 1, got {max_memory_items}"
            raise ValueError(msg)

        self.storage = storage
        self.namespace = namespace
        self.max_memory_items = max_memory_items
        self.persist = persist
        self.clock: Clock = clock or epoch_millis
        self.statistics = statistics or CacheStatistics()

        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._listeners: dict[str, list[InvalidationCallback]] = {}
        self._warmup_task: asyncio.Task[int] | None = None

    # ------------------------------------------------------------------ reads

    async def get(self, key: str) -> Any | None:
        """Return the payload of a fresh entry for ``key``.

        Returns None when the key was never set, was invalidated, has expired,
        was written by another cache format version or cannot be decoded.
        """
        entry = await self._read_entry(key)
        if entry is None or not entry.is_fresh(self.clock()):
            self.statistics.record_cache_miss()
            return None

        self.statistics.record_cache_hit()
        return entry.payload

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Return the entry for ``key`` whether fresh or stale."""
        entry = await self._read_entry(key)
        if entry is None:
            self.statistics.record_cache_miss()
            return None

        if entry.is_fresh(self.clock()):
            self.statistics.record_cache_hit()
        else:
            self.statistics.record_stale_read()
        return entry

    def is_fresh(self, entry: CacheEntry) -> bool:
        """Freshness check against this store's clock."""
        return entry.is_fresh(self.clock())

    async def _read_entry(self, key: str) -> CacheEntry | None:
        entry = self._memory.get(key)
        if entry is not None:
            self._memory.move_to_end(key)
            return entry.detached()

        if not self.persist:
            return None

        storage_key = self.storage_key(key)
        raw = await self._storage_call(
            self.storage.get_item(storage_key),
            operation="get",
            write=False,
            key=key,
        )
        if raw is None:
            return None

        try:
            entry = decode_entry(raw, key)
        except DomainError as e:
            log_operation_error(logger, e, operation="get", level=logging.WARNING)
            self.statistics.record_read_failure()
            await self._storage_call(
                self.storage.remove_item(storage_key),
                operation="remove_invalid",
                write=True,
                key=key,
            )
            return None

        await self._remember(key, entry)
        return entry.detached()

    # ----------------------------------------------------------------- writes

    async def set(self, key: str, value: Any, ttl: int = TTL.MEDIUM) -> None:
        """Store ``value`` under ``key`` stamped with the current time.

        Overwrites any prior entry and writes through to storage.

        Raises:
            DomainError: On an invalid key or TTL, or a payload that is not
                JSON serializable
        """
        self._validate_key(key)
        if ttl < 0 and ttl != TTL.INFINITE:
            raise create_validation_error(
                f"ttl must be non-negative or {TTL.INFINITE}, got {ttl}",
                ErrorCode.INVALID_TTL,
                key=key,
                operation="set",
            )

        entry = CacheEntry(key=key, payload=value, stored_at=self.clock(), ttl=ttl)
        raw = encode_entry(entry)

        # The memory layer keeps its own copy, decoded from what storage gets
        await self._remember(key, decode_entry(raw, key))
        self.statistics.record_write()

        if self.persist:
            stored = await self._storage_call(
                self.storage.set_item(self.storage_key(key), raw),
                operation="set",
                write=True,
                key=key,
                default=False,
                success=True,
            )
            if not stored:
                self.statistics.record_write_failure()

    async def invalidate(self, key: str) -> None:
        """Remove ``key`` from memory and storage and notify listeners."""
        self._memory.pop(key, None)
        if self.persist:
            await self._storage_call(
                self.storage.remove_item(self.storage_key(key)),
                operation="invalidate",
                write=True,
                key=key,
            )
        self.statistics.record_invalidation()
        self._notify_invalidation(key)

    async def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key whose name matches the regular expression ``pattern``.

        Returns:
            Number of distinct keys removed

        Raises:
            DomainError: If ``pattern`` is not a valid regular expression
        """
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise create_validation_error(
                f"Invalid invalidation pattern: {pattern!r}",
                operation="invalidate_pattern",
                original_error=e,
            ) from e

        matched = {key for key in self._memory if regex.search(key)}
        matched.update(key for key in await self._stored_keys() if regex.search(key))

        for key in matched:
            self._memory.pop(key, None)

        if matched and self.persist:
            await self._storage_call(
                self.storage.multi_remove([self.storage_key(key) for key in matched]),
                operation="invalidate_pattern",
                write=True,
            )

        self.statistics.record_invalidation(len(matched))
        for key in matched:
            self._notify_invalidation(key)

        logger.debug("Invalidated %d keys matching %r", len(matched), pattern)
        return len(matched)

    async def clear(self) -> None:
        """Remove every namespaced entry; keys outside the namespace stay."""
        self._memory.clear()
        if self.persist:
            storage_keys = [self.storage_key(key) for key in await self._stored_keys()]
            if storage_keys:
                await self._storage_call(
                    self.storage.multi_remove(storage_keys),
                    operation="clear",
                    write=True,
                )
        logger.info("Cache cleared (namespace=%s)", self.namespace)

    async def purge_expired(self) -> int:
        """Remove expired, undecodable and wrong-version entries.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        stale = [key for key, entry in self._memory.items() if not entry.is_fresh(now)]
        for key in stale:
            del self._memory[key]

        doomed = set(stale)
        for key, entry in await self._scan_storage():
            if entry is None or not entry.is_fresh(now):
                doomed.add(key)

        if doomed and self.persist:
            await self._storage_call(
                self.storage.multi_remove([self.storage_key(key) for key in doomed]),
                operation="purge_expired",
                write=True,
            )

        if doomed:
            logger.info("Purged %d expired or invalid cache entries", len(doomed))
        return len(doomed)

    # ---------------------------------------------------------------- warm-up

    async def warm_up(self) -> int:
        """Load fresh persisted entries into the memory layer.

        Concurrent callers share one run. When storage holds more entries
        than the memory layer can keep, the most recently stored ones win.
        Warm-up never removes anything from storage.

        Returns:
            Number of entries loaded
        """
        if self._warmup_task is None or self._warmup_task.done():
            self._warmup_task = asyncio.ensure_future(self._perform_warm_up())
        return await asyncio.shield(self._warmup_task)

    async def _perform_warm_up(self) -> int:
        if not self.persist:
            return 0

        now = self.clock()
        fresh = [
            entry
            for _, entry in await self._scan_storage()
            if entry is not None and entry.is_fresh(now)
        ]
        fresh.sort(key=lambda entry: entry.stored_at)
        loaded = fresh[-self.max_memory_items :]

        # Newest first, each pushed to the least recent end
        for entry in reversed(loaded):
            if entry.key not in self._memory:
                self._memory[entry.key] = entry
                self._memory.move_to_end(entry.key, last=False)
        while len(self._memory) > self.max_memory_items:
            self._memory.popitem(last=False)

        logger.info("Warmed up %d cache entries from storage", len(loaded))
        return len(loaded)

    # -------------------------------------------------------------- listeners

    def on_invalidate(self, key: str, callback: InvalidationCallback) -> Callable[[], None]:
        """Register ``callback`` for invalidations of ``key``.

        Returns:
            A function removing the registration
        """
        self._listeners.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._listeners.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._listeners[key]

        return unsubscribe

    def _notify_invalidation(self, key: str) -> None:
        for callback in list(self._listeners.get(key, ())):
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.warning("Invalidation listener failed for key %s", key, exc_info=True)

    # -------------------------------------------------------------- inspection

    def get_stats(self) -> dict[str, Any]:
        return {
            "memory_size": len(self._memory),
            "max_size": self.max_memory_items,
            "namespace": self.namespace,
            "persist": self.persist,
            **self.statistics.to_dict(),
        }

    async def stored_entries(self) -> list[CacheEntry]:
        """Decode every valid namespaced entry held by storage."""
        return [entry for _, entry in await self._scan_storage() if entry is not None]

    def storage_key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    # ----------------------------------------------------------------- helpers

    def _validate_key(self, key: str) -> None:
        if not isinstance(key, str) or not (
            CacheValidationConstants.MIN_KEY_LENGTH
            <= len(key)
            <= CacheValidationConstants.MAX_KEY_LENGTH
        ):
            raise create_validation_error(
                "Cache key must be a string of "
                f"{CacheValidationConstants.MIN_KEY_LENGTH}-"
                f"{CacheValidationConstants.MAX_KEY_LENGTH} characters",
                ErrorCode.INVALID_CACHE_KEY,
                operation="set",
            )

    async def _remember(self, key: str, entry: CacheEntry) -> None:
        """Insert into the memory layer, evicting least recently used entries."""
        self._memory[key] = entry
        self._memory.move_to_end(key)

        evicted: list[str] = []
        while len(self._memory) > self.max_memory_items:
            evicted_key, _ = self._memory.popitem(last=False)
            evicted.append(evicted_key)
            self.statistics.record_eviction()

        if evicted and self.persist:
            logger.debug("Evicted %d least recently used entries", len(evicted))
            await self._storage_call(
                self.storage.multi_remove([self.storage_key(k) for k in evicted]),
                operation="evict",
                write=True,
            )

    async def _stored_keys(self) -> list[str]:
        """Namespaced keys present in storage, without the prefix."""
        if not self.persist:
            return []
        all_keys = await self._storage_call(
            self.storage.get_all_keys(),
            operation="get_all_keys",
            write=False,
            default=[],
        )
        prefix_length = len(self.namespace)
        return [k[prefix_length:] for k in all_keys if k.startswith(self.namespace)]

    async def _scan_storage(self) -> list[tuple[str, CacheEntry | None]]:
        """Decode every namespaced storage entry; undecodable ones map to None."""
        keys = await self._stored_keys()
        if not keys:
            return []

        pairs = await self._storage_call(
            self.storage.multi_get([self.storage_key(key) for key in keys]),
            operation="multi_get",
            write=False,
            default=[],
        )

        prefix_length = len(self.namespace)
        scanned: list[tuple[str, CacheEntry | None]] = []
        for storage_key, raw in pairs:
            key = storage_key[prefix_length:]
            if raw is None:
                continue
            try:
                scanned.append((key, decode_entry(raw, key)))
            except DomainError:
                scanned.append((key, None))
        return scanned

    async def _storage_call(
        self,
        awaitable: Awaitable[T],
        *,
        operation: str,
        write: bool,
        key: str | None = None,
        default: Any = None,
        success: Any = None,
    ) -> Any:
        """Await a storage call, logging and swallowing any failure.

        Returns the call's result (or ``success`` when given) and ``default``
        when the call failed.
        """
        try:
            result = await awaitable
        except SiloCacheError as e:
            log_operation_error(logger, e, operation=operation, level=logging.WARNING)
            if not write:
                self.statistics.record_read_failure()
            return default
        except Exception as e:  # noqa: BLE001
            error = create_storage_error(
                f"Storage {operation} failed: {e!s}",
                write=write,
                key=key,
                operation=operation,
                original_error=e,
            )
            log_operation_error(logger, error, operation=operation, level=logging.WARNING)
            if not write:
                self.statistics.record_read_failure()
            return default
        return result if success is None else success
