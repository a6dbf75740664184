"""Tests for the KeyStore."""

from __future__ import annotations

import orjson
import pytest

from silo_cache.services.cache_models import CacheEntry, encode_entry
from silo_cache.services.key_store import KeyStore
from silo_cache.services.key_value_store import MemoryStorage
from silo_cache.shared.constants import TTL, KeyStoreConfig
from silo_cache.shared.errors import DomainError, ErrorCode, InfrastructureError

NS = KeyStoreConfig.NAMESPACE


class FailingStorage(MemoryStorage):
    """Storage whose reads and/or writes fail."""

    def __init__(self, *, fail_reads: bool = False, fail_writes: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    async def get_item(self, key):
        if self.fail_reads:
            raise InfrastructureError(ErrorCode.STORAGE_READ_FAILED, "disk unavailable")
        return await super().get_item(key)

    async def set_item(self, key, value):
        if self.fail_writes:
            raise OSError("disk full")
        await super().set_item(key, value)


class TestKeyStoreReadWrite:
    """set/get round trip and TTL semantics."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value",
        [
            {"orders": [{"id": 1, "total": 12.5, "items": ["a", "b"]}]},
            [1, 2, 3],
            "plain string",
            0,
            False,
        ],
    )
    async def test_set_then_get_returns_equal_value(self, store, value):
        await store.set("orders:today", value, TTL.SHORT)

        assert await store.get("orders:today") == value

    @pytest.mark.asyncio
    async def test_mutating_value_after_set_leaves_cache_untouched(self, store):
        # Given
        value = {"orders": [{"id": 1}]}
        await store.set("orders:today", value, TTL.SHORT)

        # When: the caller keeps editing its own object
        value["orders"].append({"id": 2})

        # Then
        assert await store.get("orders:today") == {"orders": [{"id": 1}]}

    @pytest.mark.asyncio
    async def test_mutating_returned_payload_leaves_cache_untouched(self, store):
        # Given
        await store.set("orders:today", {"orders": [{"id": 1}]}, TTL.SHORT)

        # When
        (await store.get("orders:today"))["orders"].append({"id": 2})
        (await store.get_entry("orders:today")).payload["orders"].clear()

        # Then
        assert await store.get("orders:today") == {"orders": [{"id": 1}]}

    @pytest.mark.asyncio
    async def test_get_unknown_key_is_none(self, store):
        assert await store.get("never-set") is None
        assert store.statistics.metrics.misses == 1

    @pytest.mark.asyncio
    async def test_entry_is_fresh_until_ttl_elapses(self, store, clock):
        # Given
        await store.set("orders:today", ["a"], ttl=30_000)

        # When: exactly at the TTL boundary
        clock.advance(30_000)

        # Then
        assert await store.get("orders:today") == ["a"]

        clock.advance(1)
        assert await store.get("orders:today") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_still_available_as_stale(self, store, clock):
        # Given
        await store.set("categories", ["x"], ttl=1_000)
        clock.advance(5_000)

        # When
        entry = await store.get_entry("categories")

        # Then
        assert entry is not None
        assert entry.payload == ["x"]
        assert store.is_fresh(entry) is False
        assert store.statistics.metrics.stale_reads == 1

    @pytest.mark.asyncio
    async def test_infinite_ttl_never_expires(self, store, clock):
        await store.set("system_config", {"tax": 15}, TTL.INFINITE)

        clock.advance(10 * TTL.DAY)

        assert await store.get("system_config") == {"tax": 15}

    @pytest.mark.asyncio
    async def test_zero_ttl_is_fresh_only_at_write_time(self, store, clock):
        await store.set("k", 1, ttl=0)
        assert await store.get("k") == 1

        clock.advance(1)
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_set_overwrites_and_restamps(self, store, clock):
        await store.set("k", "old", ttl=1_000)
        clock.advance(900)

        await store.set("k", "new", ttl=1_000)
        clock.advance(900)

        assert await store.get("k") == "new"

    @pytest.mark.asyncio
    async def test_set_writes_namespaced_versioned_entry(self, store, storage, clock):
        await store.set("orders:today", [1], ttl=30_000)

        raw = await storage.get_item(f"{NS}orders:today")
        document = orjson.loads(raw)
        assert document == {
            "key": "orders:today",
            "payload": [1],
            "stored_at": clock.now,
            "ttl": 30_000,
            "version": 1,
        }

    @pytest.mark.asyncio
    async def test_entries_are_read_back_from_storage(self, storage, clock):
        # Given: a value written by a previous process
        await KeyStore(storage, clock=clock).set("vendors", ["v1"], TTL.MEDIUM)

        # When
        fresh_process = KeyStore(storage, clock=clock)

        # Then
        assert await fresh_process.get("vendors") == ["v1"]


class TestKeyStoreValidation:
    @pytest.mark.asyncio
    async def test_negative_ttl_rejected(self, store):
        with pytest.raises(DomainError) as exc_info:
            await store.set("k", 1, ttl=-5)
        assert exc_info.value.code == ErrorCode.INVALID_TTL

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", "x" * 513])
    async def test_invalid_key_rejected(self, store, key):
        with pytest.raises(DomainError) as exc_info:
            await store.set(key, 1)
        assert exc_info.value.code == ErrorCode.INVALID_CACHE_KEY

    @pytest.mark.asyncio
    async def test_unserializable_payload_rejected(self, store):
        with pytest.raises(DomainError) as exc_info:
            await store.set("k", {"when": object()})
        assert exc_info.value.code == ErrorCode.CACHE_SERIALIZATION_ERROR

    def test_memory_capacity_must_be_positive(self, storage):
        with pytest.raises(ValueError, match="max_memory_items"):
            KeyStore(storage, max_memory_items=0)


class TestKeyStoreInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_removes_from_memory_and_storage(self, store, storage):
        # Given
        await store.set("orders:today", [1], TTL.INFINITE)

        # When
        await store.invalidate("orders:today")

        # Then
        assert await store.get("orders:today") is None
        assert f"{NS}orders:today" not in storage

    @pytest.mark.asyncio
    async def test_invalidate_notifies_listeners_until_unsubscribed(self, store):
        calls = []
        unsubscribe = store.on_invalidate("orders", lambda: calls.append("orders"))

        await store.invalidate("orders")
        unsubscribe()
        await store.invalidate("orders")

        assert calls == ["orders"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_invalidation(self, store):
        def broken():
            raise RuntimeError("listener bug")

        store.on_invalidate("orders", broken)
        await store.set("orders", 1)

        await store.invalidate("orders")

        assert await store.get("orders") is None

    @pytest.mark.asyncio
    async def test_invalidate_pattern_removes_matching_keys(self, store, storage, clock):
        # Given: one key only in storage, others in memory
        await KeyStore(storage, clock=clock).set("orders:page=2", 2)
        await store.set("orders:page=1", 1)
        await store.set("orders_detail", 3)
        await store.set("vendors", 4)

        # When
        removed = await store.invalidate_pattern(r"^orders:")

        # Then
        assert removed == 2
        assert await store.get("orders:page=1") is None
        assert await store.get("orders:page=2") is None
        assert await store.get("orders_detail") == 3
        assert await store.get("vendors") == 4
        assert store.statistics.metrics.invalidations == 2

    @pytest.mark.asyncio
    async def test_invalidate_pattern_rejects_bad_regex(self, store):
        with pytest.raises(DomainError) as exc_info:
            await store.invalidate_pattern("orders[")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_clear_only_touches_namespace(self, clock):
        # Given
        storage = MemoryStorage({"token": "secret"})
        store = KeyStore(storage, clock=clock)
        await store.set("a", 1)
        await store.set("b", 2)

        # When
        await store.clear()

        # Then
        assert await store.get("a") is None
        assert await storage.get_all_keys() == ["token"]


class TestKeyStoreFailureSwallowing:
    """Storage failures never reach the caller."""

    @pytest.mark.asyncio
    async def test_failed_write_keeps_memory_value(self, clock):
        # Given
        store = KeyStore(FailingStorage(fail_writes=True), clock=clock)

        # When
        await store.set("orders", [1])

        # Then
        assert await store.get("orders") == [1]
        assert store.statistics.metrics.write_failures == 1

    @pytest.mark.asyncio
    async def test_failed_read_is_a_miss(self, clock):
        store = KeyStore(FailingStorage(fail_reads=True), clock=clock)

        assert await store.get("orders") is None
        assert store.statistics.metrics.read_failures == 1

    @pytest.mark.asyncio
    async def test_corrupted_entry_is_a_miss_and_removed(self, clock):
        # Given
        storage = MemoryStorage({f"{NS}orders": "not json{{"})
        store = KeyStore(storage, clock=clock)

        # When
        result = await store.get("orders")

        # Then
        assert result is None
        assert f"{NS}orders" not in storage
        assert store.statistics.metrics.read_failures == 1

    @pytest.mark.asyncio
    async def test_entry_from_other_version_is_a_miss_and_removed(self, clock):
        document = {"key": "orders", "payload": [1], "stored_at": clock.now, "ttl": -1, "version": 99}
        storage = MemoryStorage({f"{NS}orders": orjson.dumps(document).decode()})
        store = KeyStore(storage, clock=clock)

        assert await store.get_entry("orders") is None
        assert f"{NS}orders" not in storage


class TestKeyStoreMemoryLayer:
    @pytest.mark.asyncio
    async def test_lru_eviction_removes_from_storage(self, storage, clock):
        # Given
        store = KeyStore(storage, max_memory_items=2, clock=clock)
        await store.set("a", 1)
        await store.set("b", 2)
        await store.get("a")  # a is now most recently used

        # When
        await store.set("c", 3)

        # Then: b was least recently used
        assert await store.get("b") is None
        assert await store.get("a") == 1
        assert await store.get("c") == 3
        assert f"{NS}b" not in storage
        assert store.statistics.metrics.evictions == 1

    @pytest.mark.asyncio
    async def test_memory_only_store_never_touches_storage(self, storage, clock):
        store = KeyStore(storage, persist=False, clock=clock)

        await store.set("a", 1)

        assert await store.get("a") == 1
        assert len(storage) == 0

    @pytest.mark.asyncio
    async def test_get_stats(self, store):
        await store.set("a", 1)
        await store.get("a")

        stats = store.get_stats()

        assert stats["memory_size"] == 1
        assert stats["namespace"] == NS
        assert stats["hits"] == 1
        assert stats["writes"] == 1
        assert stats["hit_ratio"] == 1.0


class TestKeyStoreMaintenance:
    @pytest.mark.asyncio
    async def test_purge_expired_removes_expired_and_corrupted(self, storage, clock):
        # Given
        store = KeyStore(storage, clock=clock)
        await store.set("short", 1, ttl=1_000)
        await store.set("long", 2, ttl=TTL.INFINITE)
        await storage.set_item(f"{NS}broken", "###")
        clock.advance(2_000)

        # When
        removed = await store.purge_expired()

        # Then
        assert removed == 2
        assert sorted(await storage.get_all_keys()) == [f"{NS}long"]
        assert await store.get("long") == 2

    @pytest.mark.asyncio
    async def test_stored_entries_skips_undecodable(self, store, storage):
        await store.set("a", 1)
        await storage.set_item(f"{NS}broken", "###")
        await storage.set_item("outside_namespace", "x")

        entries = await store.stored_entries()

        assert [entry.key for entry in entries] == ["a"]

    @pytest.mark.asyncio
    async def test_warm_up_loads_newest_fresh_entries(self, storage, clock):
        # Given: three fresh entries and one expired, written by an earlier process
        for offset, key in enumerate(["oldest", "middle", "newest"]):
            entry = CacheEntry(key, key, stored_at=clock.now + offset, ttl=TTL.INFINITE)
            await storage.set_item(f"{NS}{key}", encode_entry(entry))
        expired = CacheEntry("expired", 0, stored_at=clock.now - 10_000, ttl=1)
        await storage.set_item(f"{NS}expired", encode_entry(expired))
        store = KeyStore(storage, max_memory_items=2, clock=clock)

        # When
        loaded = await store.warm_up()

        # Then
        assert loaded == 2
        assert store.get_stats()["memory_size"] == 2
        # Nothing is evicted from storage by warm-up
        assert len(storage) == 4

    @pytest.mark.asyncio
    async def test_warm_up_memory_only_store_loads_nothing(self, storage, clock):
        store = KeyStore(storage, persist=False, clock=clock)

        assert await store.warm_up() == 0
