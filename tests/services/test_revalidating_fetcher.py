"""Tests for the stale-while-revalidate fetcher and its queries."""

from __future__ import annotations

import asyncio

import orjson
import pytest

from silo_cache.services.revalidating_fetcher import (
    FetchOutcome,
    RevalidatingFetcher,
    payloads_equal,
)
from silo_cache.services.state_machine import FetchStatus
from silo_cache.shared.constants import TTL, StalePolicy
from silo_cache.shared.errors import (
    DomainError,
    ErrorCode,
    InfrastructureError,
    SiloCacheError,
)

from tests.test_helpers import CountingFetch, spin

KEY = "orders:today"
ORDERS = {"orders": [{"id": 1, "status": "pending"}, {"id": 2, "status": "paid"}]}


def server_error() -> InfrastructureError:
    return InfrastructureError(ErrorCode.API_SERVER_ERROR, "502 from upstream")


class TestPayloadsEqual:
    def test_key_order_does_not_matter(self):
        assert payloads_equal({"a": 1, "b": [1, {"c": 2}]}, {"b": [1, {"c": 2}], "a": 1})

    def test_nested_change_is_detected(self):
        changed = {"orders": [{"id": 1, "status": "pending"}, {"id": 2, "status": "void"}]}

        assert not payloads_equal(ORDERS, changed)

    def test_list_order_matters(self):
        assert not payloads_equal([1, 2], [2, 1])

    def test_unserializable_values_fall_back_to_equality(self):
        marker = object()

        assert payloads_equal({"m": marker}, {"m": marker})


class TestColdStart:
    """Empty cache: loading is published first, then the fetched value."""

    @pytest.mark.asyncio
    async def test_cold_start_fetches_publishes_and_persists(self, fetcher, store):
        # Given
        fetch = CountingFetch(ORDERS)
        states = []

        # When
        query = await fetcher.load_with_cache(KEY, fetch, TTL.SHORT, listener=states.append)

        # Then
        assert fetch.calls == 1
        assert [(s.status, s.loading, s.value) for s in states] == [
            (FetchStatus.LOADING, True, None),
            (FetchStatus.READY, False, ORDERS),
        ]
        assert query.value == ORDERS
        assert await store.get(KEY) == ORDERS

    @pytest.mark.asyncio
    async def test_outcome_is_network_fetch(self, fetcher):
        query = fetcher.watch(KEY, CountingFetch(ORDERS))

        assert query.status == FetchStatus.IDLE
        assert await query.load() == FetchOutcome.NETWORK_FETCH

    @pytest.mark.asyncio
    async def test_concurrent_cold_loads_share_one_request(self, fetcher):
        # Given
        gate = asyncio.Event()
        fetch = CountingFetch(ORDERS, gate=gate)
        first = fetcher.watch(KEY, fetch)
        second = fetcher.watch(KEY, fetch)

        # When
        loads = asyncio.gather(first.load(), second.load())
        await spin()
        gate.set()
        outcomes = await loads

        # Then
        assert outcomes == [FetchOutcome.NETWORK_FETCH, FetchOutcome.NETWORK_FETCH]
        assert fetch.calls == 1
        assert first.value == second.value == ORDERS
        assert fetcher.store.statistics.metrics.deduplicated_fetches == 1


class TestWarmStart:
    """Cached data is painted first and revalidated in the background."""

    @pytest.mark.asyncio
    async def test_fresh_hit_publishes_without_loading(self, fetcher, store, clock):
        # Given
        await store.set(KEY, ORDERS, ttl=30_000)
        clock.advance(1_000)
        fetch = CountingFetch(ORDERS)
        states = []

        # When
        query = await fetcher.load_with_cache(KEY, fetch, 30_000, listener=states.append)

        # Then: the cached value is on screen before any network activity
        assert [(s.status, s.loading, s.value) for s in states] == [
            (FetchStatus.READY, False, ORDERS)
        ]

        await query.wait_for_background()
        assert fetch.calls == 1
        assert all(not s.loading for s in states)

    @pytest.mark.asyncio
    async def test_identical_background_result_publishes_nothing(self, fetcher, store):
        # Given
        await store.set(KEY, ORDERS, TTL.SHORT)
        reordered = {"orders": [dict(reversed(list(o.items()))) for o in ORDERS["orders"]]}
        states = []

        # When
        query = await fetcher.load_with_cache(KEY, CountingFetch(reordered), listener=states.append)
        await query.wait_for_background()

        # Then
        assert len(states) == 1
        assert store.statistics.metrics.background_unchanged == 1

    @pytest.mark.asyncio
    async def test_changed_background_result_is_published_and_persisted(self, fetcher, store):
        # Given
        await store.set(KEY, ORDERS, TTL.SHORT)
        updated = {"orders": [{"id": 1, "status": "paid"}]}
        states = []

        # When
        query = await fetcher.load_with_cache(KEY, CountingFetch(updated), listener=states.append)
        await query.wait_for_background()

        # Then
        assert [s.value for s in states] == [ORDERS, updated]
        assert query.status == FetchStatus.READY
        assert await store.get(KEY) == updated
        assert store.statistics.metrics.background_updates == 1

    @pytest.mark.asyncio
    async def test_screen_edits_do_not_hide_background_changes(self, fetcher, store, storage):
        # Given a cached list on screen and a refresh still in flight
        await store.set(KEY, {"orders": [1]}, TTL.SHORT)
        gate = asyncio.Event()
        query = await fetcher.load_with_cache(
            KEY, CountingFetch({"orders": [1, 2]}, gate=gate), TTL.SHORT
        )

        # When the screen edits the published value in place
        query.value["orders"].append(2)
        gate.set()
        await query.wait_for_background()

        # Then the refresh is still published and both cache layers agree
        raw = await storage.get_item(store.storage_key(KEY))
        assert query.value == {"orders": [1, 2]}
        assert await store.get(KEY) == {"orders": [1, 2]}
        assert orjson.loads(raw)["payload"] == {"orders": [1, 2]}
        assert store.statistics.metrics.background_updates == 1

    @pytest.mark.asyncio
    async def test_back_to_back_loads_issue_one_request(self, fetcher, store):
        # Given
        await store.set(KEY, ORDERS, TTL.SHORT)
        gate = asyncio.Event()
        fetch = CountingFetch(ORDERS, gate=gate)

        # When
        first = await fetcher.load_with_cache(KEY, fetch)
        second = await fetcher.load_with_cache(KEY, fetch)
        gate.set()
        await fetcher.wait_for_pending()

        # Then
        assert first.value == second.value == ORDERS
        assert fetch.calls == 1

    @pytest.mark.asyncio
    async def test_reloading_same_query_does_not_republish(self, fetcher, store):
        await store.set(KEY, ORDERS, TTL.SHORT)
        states = []
        query = await fetcher.load_with_cache(KEY, CountingFetch(ORDERS), listener=states.append)
        await query.wait_for_background()

        await query.load()
        await query.wait_for_background()

        assert len(states) == 1

    @pytest.mark.asyncio
    async def test_background_failure_is_swallowed(self, fetcher, store):
        # Given
        await store.set(KEY, ORDERS, TTL.SHORT)
        fetch = CountingFetch(InfrastructureError(ErrorCode.API_AUTHENTICATION_FAILED, "401"))

        # When
        query = await fetcher.load_with_cache(KEY, fetch)
        await query.wait_for_background()

        # Then
        assert query.status == FetchStatus.READY
        assert query.value == ORDERS
        assert query.error is None


class TestStaleEntries:
    """Expired entries follow the configured stale policy."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("policy", "expected_outcome", "expected_values"),
        [
            (StalePolicy.SERVE_STALE, FetchOutcome.CACHE_HIT_STALE, [ORDERS, {"orders": []}]),
            (StalePolicy.REFETCH_STALE, FetchOutcome.NETWORK_FETCH, [None, {"orders": []}]),
        ],
    )
    async def test_stale_policy(
        self, store, clock, sleep, policy, expected_outcome, expected_values
    ):
        # Given
        await store.set(KEY, ORDERS, ttl=1_000)
        clock.advance(5_000)
        assert store.is_fresh(await store.get_entry(KEY)) is False
        fetcher = RevalidatingFetcher(store, stale_policy=policy, sleep=sleep)
        states = []

        # When
        query = fetcher.watch(KEY, CountingFetch({"orders": []}), listener=states.append)
        outcome = await query.load()
        await query.wait_for_background()

        # Then
        assert outcome == expected_outcome
        assert [s.value for s in states] == expected_values
        assert await store.get(KEY) == {"orders": []}


class TestForcedRefresh:
    @pytest.mark.asyncio
    async def test_refresh_after_mutation_only_shows_network_data(self, fetcher, store):
        # Given: the screen shows cached orders
        await store.set(KEY, ORDERS, TTL.SHORT)
        server_orders = ORDERS
        seen_in_store = []

        async def network_fetch():
            seen_in_store.append(await store.get_entry(KEY))
            return server_orders

        states = []
        query = await fetcher.load_with_cache(KEY, network_fetch, listener=states.append)
        await query.wait_for_background()
        states.clear()
        seen_in_store.clear()

        # When: an order is deleted on the server, then the screen refreshes
        server_orders = {"orders": [{"id": 1, "status": "pending"}]}
        outcome = await query.refresh()

        # Then
        assert outcome == FetchOutcome.NETWORK_FETCH
        assert seen_in_store == [None]
        assert states[0].loading is True
        assert states[-1].value == server_orders
        assert states[-1].loading is False
        assert await store.get(KEY) == server_orders

    @pytest.mark.asyncio
    async def test_forced_fetch_is_not_overwritten_by_older_background_fetch(
        self, fetcher, store
    ):
        # Given: a slow background refresh in flight
        await store.set(KEY, "cached", TTL.SHORT)
        gate = asyncio.Event()
        query = await fetcher.load_with_cache(KEY, CountingFetch("background", gate=gate))
        await spin()

        # When: a forced fetch completes first
        forced = await fetcher.get_or_fetch(KEY, CountingFetch("forced"), force_refresh=True)
        gate.set()
        await query.wait_for_background()

        # Then
        assert forced == "forced"
        assert await store.get(KEY) == "forced"

    @pytest.mark.asyncio
    async def test_foreground_join_of_unchanged_background_result_restamps_entry(
        self, fetcher, store, clock
    ):
        # Given: a stale entry whose background refresh is in flight
        await store.set(KEY, ORDERS, ttl=1_000)
        clock.advance(5_000)
        gate = asyncio.Event()
        fetch = CountingFetch(ORDERS, gate=gate)
        await fetcher.load_with_cache(KEY, fetch)

        # When: a screen that refuses stale data joins the same request
        fetcher.stale_policy = StalePolicy.REFETCH_STALE
        joining = asyncio.ensure_future(fetcher.load_with_cache(KEY, fetch))
        await spin()
        gate.set()
        query = await joining

        # Then
        assert fetch.calls == 1
        assert query.value == ORDERS
        entry = await store.get_entry(KEY)
        assert entry.stored_at == clock()
        assert store.is_fresh(entry) is True


class TestErrorPolicy:
    @pytest.mark.asyncio
    async def test_failure_without_value_moves_to_error(self, fetcher, sleep):
        # Given
        fetch = CountingFetch(server_error())
        states = []

        # When
        query = fetcher.watch(KEY, fetch, listener=states.append)
        outcome = await query.load()

        # Then
        assert outcome == FetchOutcome.NETWORK_ERROR
        assert query.status == FetchStatus.ERROR
        assert query.value is None
        assert query.error.code == ErrorCode.API_SERVER_ERROR
        assert query.loading is False
        # retry_count=2 with exponential backoff
        assert fetch.calls == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_failure_keeps_last_known_value(self, fetcher):
        # Given
        fetch = CountingFetch(ORDERS, server_error())
        query = await fetcher.load_with_cache(KEY, fetch)

        # When
        outcome = await query.refresh(invalidate=False)

        # Then
        assert outcome == FetchOutcome.NETWORK_ERROR
        assert query.status == FetchStatus.READY
        assert query.value == ORDERS
        assert query.error is not None

        query.dismiss_error()
        assert query.error is None
        assert query.value == ORDERS

    @pytest.mark.asyncio
    async def test_error_state_recovers_on_next_load(self, fetcher):
        fetch = CountingFetch(server_error(), server_error(), server_error(), ORDERS)
        query = fetcher.watch(KEY, fetch)
        await query.load()
        assert query.status == FetchStatus.ERROR

        await query.load()

        assert query.status == FetchStatus.READY
        assert query.value == ORDERS
        assert query.error is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code",
        [
            ErrorCode.API_AUTHENTICATION_FAILED,
            ErrorCode.API_REQUEST_FAILED,
            ErrorCode.API_INVALID_RESPONSE,
        ],
    )
    async def test_client_errors_are_not_retried(self, fetcher, sleep, code):
        fetch = CountingFetch(InfrastructureError(code, "nope"))

        with pytest.raises(InfrastructureError):
            await fetcher.get_or_fetch(KEY, fetch)

        assert fetch.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unexpected_exceptions_are_wrapped_and_retried(self, fetcher):
        fetch = CountingFetch(RuntimeError("socket closed"))

        with pytest.raises(InfrastructureError) as exc_info:
            await fetcher.get_or_fetch(KEY, fetch)

        assert exc_info.value.code == ErrorCode.NETWORK_FETCH_FAILED
        assert isinstance(exc_info.value.original_error, RuntimeError)
        assert fetch.calls == 3

    @pytest.mark.asyncio
    async def test_retry_then_success(self, fetcher, store):
        fetch = CountingFetch(server_error(), ORDERS)

        value = await fetcher.get_or_fetch(KEY, fetch)

        assert value == ORDERS
        assert fetch.calls == 2
        assert store.statistics.metrics.network_errors == 1

    @pytest.mark.asyncio
    async def test_zero_retries_raises_the_first_failure(self, store, sleep):
        fetcher = RevalidatingFetcher(store, retry_count=0, sleep=sleep)
        fetch = CountingFetch(server_error())

        with pytest.raises(InfrastructureError) as exc_info:
            await fetcher.get_or_fetch(KEY, fetch)

        assert exc_info.value.code == ErrorCode.API_SERVER_ERROR
        assert fetch.calls == 1
        assert sleep.delays == []

    def test_negative_retry_count_rejected(self, store):
        with pytest.raises(ValueError, match="retry_count"):
            RevalidatingFetcher(store, retry_count=-1)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_closed_query_ignores_background_result(self, fetcher, store):
        # Given
        await store.set(KEY, ORDERS, TTL.SHORT)
        gate = asyncio.Event()
        states = []
        query = await fetcher.load_with_cache(
            KEY, CountingFetch({"orders": []}, gate=gate), listener=states.append
        )

        # When: the screen unmounts before the refresh completes
        query.close()
        gate.set()
        await fetcher.wait_for_pending()

        # Then: nothing is published, but the fresh data is still cached
        assert len(states) == 1
        assert query.value == ORDERS
        assert await store.get(KEY) == {"orders": []}

    @pytest.mark.asyncio
    async def test_close_during_foreground_load_returns_cancelled(self, fetcher, store):
        # Given
        gate = asyncio.Event()
        fetch = CountingFetch(ORDERS, gate=gate)
        states = []
        query = fetcher.watch(KEY, fetch, listener=states.append)
        loading = asyncio.ensure_future(query.load())
        await spin()
        assert fetch.calls == 1

        # When
        query.close()
        outcome = await loading
        gate.set()
        await fetcher.wait_for_pending()

        # Then
        assert outcome == FetchOutcome.CANCELLED
        assert [s.status for s in states] == [FetchStatus.LOADING]
        assert await store.get(KEY) == ORDERS

    @pytest.mark.asyncio
    async def test_load_after_close_raises(self, fetcher):
        query = fetcher.watch(KEY, CountingFetch(ORDERS))
        query.close()

        with pytest.raises(DomainError) as exc_info:
            await query.load()

        assert exc_info.value.code == ErrorCode.OPERATION_CANCELLED
        assert query.closed is True

    @pytest.mark.asyncio
    async def test_context_manager_closes_query(self, fetcher):
        async with fetcher.watch(KEY, CountingFetch(ORDERS)) as query:
            await query.load()

        assert query.closed is True

    @pytest.mark.asyncio
    async def test_unsubscribed_and_failing_listeners(self, fetcher):
        received = []

        def broken(_state):
            raise RuntimeError("render bug")

        query = fetcher.watch(KEY, CountingFetch(ORDERS), listener=broken)
        unsubscribe = query.subscribe(received.append)
        unsubscribe()

        await query.load()

        assert received == []
        assert query.value == ORDERS


class TestOneShotHelpers:
    @pytest.mark.asyncio
    async def test_get_or_fetch_serves_fresh_cache(self, fetcher, store):
        await store.set(KEY, ORDERS, TTL.SHORT)
        fetch = CountingFetch({"orders": []})

        assert await fetcher.get_or_fetch(KEY, fetch) == ORDERS
        assert fetch.calls == 0

    @pytest.mark.asyncio
    async def test_get_or_fetch_stale_while_revalidate(self, fetcher, store, clock):
        # Given
        await store.set(KEY, ORDERS, ttl=1_000)
        clock.advance(2_000)

        # When
        value = await fetcher.get_or_fetch(KEY, CountingFetch({"orders": []}), ttl=1_000)

        # Then: stale data now, fresh data after the background refresh
        assert value == ORDERS
        await fetcher.wait_for_pending()
        assert await store.get(KEY) == {"orders": []}

    @pytest.mark.asyncio
    async def test_get_or_fetch_without_revalidate_waits_for_network(self, fetcher, store, clock):
        await store.set(KEY, ORDERS, ttl=1_000)
        clock.advance(2_000)

        value = await fetcher.get_or_fetch(
            KEY, CountingFetch({"orders": []}), stale_while_revalidate=False
        )

        assert value == {"orders": []}

    @pytest.mark.asyncio
    async def test_get_or_fetch_persists_with_default_ttl(self, store, sleep):
        fetcher = RevalidatingFetcher(store, default_ttl=TTL.LONG, sleep=sleep)

        await fetcher.get_or_fetch(KEY, CountingFetch(ORDERS))

        entry = await store.get_entry(KEY)
        assert entry.ttl == TTL.LONG

    @pytest.mark.asyncio
    async def test_prefetch_reports_success_and_failure(self, fetcher):
        assert await fetcher.prefetch("vendors", CountingFetch(["v"])) is True
        assert (
            await fetcher.prefetch(
                "tables", CountingFetch(InfrastructureError(ErrorCode.API_REQUEST_FAILED, "400"))
            )
            is False
        )

    @pytest.mark.asyncio
    async def test_pending_keys_track_in_flight_requests(self, fetcher):
        gate = asyncio.Event()
        task = asyncio.ensure_future(fetcher.get_or_fetch(KEY, CountingFetch(ORDERS, gate=gate)))
        await spin()

        assert fetcher.pending_keys() == [KEY]

        gate.set()
        await task
        await spin()
        assert fetcher.pending_keys() == []

    @pytest.mark.asyncio
    async def test_invalidate_queries_blocks_in_flight_writes(self, fetcher, store):
        # Given
        await store.set("orders:page=1", 1)
        gate = asyncio.Event()
        task = asyncio.ensure_future(
            fetcher.get_or_fetch("orders:page=2", CountingFetch("page two", gate=gate))
        )
        await spin()

        # When
        removed = await fetcher.invalidate_queries(r"^orders:")
        gate.set()
        value = await task

        # Then: the caller gets its data but the invalidated key stays empty
        assert removed == 1
        assert value == "page two"
        assert await store.get("orders:page=1") is None
        assert await store.get("orders:page=2") is None

    @pytest.mark.asyncio
    async def test_foreground_failure_raises(self, fetcher):
        with pytest.raises(SiloCacheError):
            await fetcher.get_or_fetch(
                KEY, CountingFetch(InfrastructureError(ErrorCode.API_REQUEST_FAILED, "400"))
            )
