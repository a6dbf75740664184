"""Stale-while-revalidate orchestration.

``RevalidatingFetcher`` is shared by every screen. It owns the registry of
in-flight network requests (one per cache key) and produces ``Query``
objects, the per-screen observable state.

Load behaviour of a query:

1. Cache hit: the cached value is published as ``READY`` right away, without
   ever publishing ``loading=True``, and a background refresh is started (or
   joined when one is already in flight for the key). When it completes the
   result is compared with the cached payload by deep equality. A different
   payload is published and persisted; an identical one triggers nothing.
   Background failures are logged and swallowed.
2. Miss or forced refresh: ``LOADING`` is published, the network fetch is
   awaited, the result published as ``READY`` and persisted. On failure the
   last known value is kept and the error surfaced next to it; only without a
   value does the query move to ``ERROR``.
3. Mutation flow: ``Query.refresh()`` invalidates the key, then force-loads.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable

import orjson

from silo_cache.services.cache_models import copy_payload
from silo_cache.services.key_store import KeyStore
from silo_cache.services.state_machine import FetchStateMachine, FetchStatus
from silo_cache.shared.constants import TTL, FetcherConfig, StalePolicy
from silo_cache.shared.errors import (
    DomainError,
    ErrorCode,
    ErrorContext,
    InfrastructureError,
    SiloCacheError,
)
from silo_cache.shared.logging import log_operation_error
from silo_cache.shared.types import NetworkFetch

logger = logging.getLogger(__name__)

StateListener = Callable[["FetchState"], None]

# Failures a retry cannot fix
NON_RETRYABLE_CODES = frozenset(
    {
        ErrorCode.API_AUTHENTICATION_FAILED,
        ErrorCode.API_REQUEST_FAILED,
        ErrorCode.API_INVALID_RESPONSE,
    }
)

_CANONICAL_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS


def payloads_equal(left: Any, right: Any) -> bool:
    """Deep equality of two payloads, compared as canonical JSON.

    The whole payload is compared, so one changed field anywhere makes the
    payloads different.
    """
    try:
        return orjson.dumps(left, option=_CANONICAL_OPTIONS) == orjson.dumps(
            right, option=_CANONICAL_OPTIONS
        )
    except TypeError:
        return bool(left == right)


class FetchOutcome(str, Enum):
    """How a ``Query.load`` call was served."""

    CACHE_HIT_FRESH = "cache_hit_fresh"
    CACHE_HIT_STALE = "cache_hit_stale"
    NETWORK_FETCH = "network_fetch"
    NETWORK_ERROR = "network_error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FetchState:
    """Snapshot published to query listeners."""

    status: FetchStatus = FetchStatus.IDLE
    value: Any = None
    error: SiloCacheError | None = None
    loading: bool = False


@dataclass(frozen=True)
class _FetchResult:
    value: Any
    changed: bool


def _consume_result(task: asyncio.Task[Any]) -> None:
    # Shared tasks may finish with nobody awaiting them (closed queries)
    if not task.cancelled():
        task.exception()


class Query:
    """Observable fetch state of one screen for one cache key.

    Created through ``RevalidatingFetcher.watch`` or ``load_with_cache``.
    After ``close()`` nothing is published anymore.
    """

    def __init__(
        self,
        fetcher: RevalidatingFetcher,
        key: str,
        network_fetch: NetworkFetch,
        ttl: int,
    ) -> None:
        self.key = key
        self.ttl = ttl
        self._fetcher = fetcher
        self._network_fetch = network_fetch
        self._machine = FetchStateMachine(key)
        self._state = FetchState()
        self._listeners: list[StateListener] = []
        self._generation = 0
        self._closed = False
        self._background: asyncio.Task[None] | None = None
        self._foreground: asyncio.Future[_FetchResult] | None = None

    # ------------------------------------------------------------- state access

    @property
    def state(self) -> FetchState:
        return self._state

    @property
    def status(self) -> FetchStatus:
        return self._state.status

    @property
    def value(self) -> Any:
        return self._state.value

    @property
    def error(self) -> SiloCacheError | None:
        return self._state.error

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for every published state.

        Returns:
            A function removing the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------ loading

    async def load(self, force_refresh: bool = False) -> FetchOutcome:
        """Load the key, serving the cache first unless ``force_refresh``.

        Never raises for storage or network failures; those are reflected in
        the published state and the returned outcome.

        Raises:
            DomainError: OPERATION_CANCELLED if the query is already closed
        """
        if self._closed:
            raise DomainError(
                ErrorCode.OPERATION_CANCELLED,
                "Query is closed",
                ErrorContext(operation="load", key=self.key),
            )

        self._generation += 1
        generation = self._generation
        store = self._fetcher.store

        if not force_refresh:
            entry = await store.get_entry(self.key)
            if not self._is_current(generation):
                return FetchOutcome.CANCELLED

            fresh = entry is not None and store.is_fresh(entry)
            if entry is not None and (
                fresh or self._fetcher.stale_policy is StalePolicy.SERVE_STALE
            ):
                self._serve_cached(entry.payload)
                self._start_background(copy_payload(entry.payload), generation)
                return FetchOutcome.CACHE_HIT_FRESH if fresh else FetchOutcome.CACHE_HIT_STALE

        return await self._load_from_network(generation, force_refresh)

    async def refresh(self, force: bool = True, invalidate: bool = True) -> FetchOutcome:
        """Pull-to-refresh / after-mutation reload.

        With ``invalidate`` the key is removed from the store first, so the
        published value can only come from the network.
        """
        if invalidate:
            await self._fetcher.store.invalidate(self.key)
        return await self.load(force_refresh=force)

    def _serve_cached(self, payload: Any) -> None:
        # Re-serving the value already on screen publishes nothing
        if (
            self._state.status is FetchStatus.READY
            and self._state.error is None
            and payloads_equal(self._state.value, payload)
        ):
            return
        self._publish(FetchStatus.READY, value=payload, error=None, loading=False)

    def _start_background(self, cached_payload: Any, generation: int) -> None:
        shared = self._fetcher._start_or_join(
            self.key, self._network_fetch, self.ttl, force=False, always_write=False
        )
        if self._background is not None and not self._background.done():
            self._background.cancel()
        self._background = asyncio.ensure_future(
            self._await_background(shared, cached_payload, generation)
        )

    async def _await_background(
        self,
        shared: asyncio.Task[_FetchResult],
        cached_payload: Any,
        generation: int,
    ) -> None:
        try:
            result = await asyncio.shield(shared)
        except SiloCacheError as e:
            log_operation_error(
                logger,
                e,
                operation="background_refresh",
                context={"key": self.key},
                level=logging.WARNING,
            )
            return

        if not self._is_current(generation):
            return

        changed = not payloads_equal(result.value, cached_payload)
        self._fetcher.store.statistics.record_background_result(changed=changed)
        if changed:
            self._publish(
                FetchStatus.READY,
                value=result.value,
                error=self._state.error,
                loading=False,
            )

    async def _load_from_network(self, generation: int, force: bool) -> FetchOutcome:
        if self._state.status is not FetchStatus.LOADING:
            self._publish(FetchStatus.LOADING, value=self._state.value, error=None, loading=True)

        shared = self._fetcher._start_or_join(
            self.key, self._network_fetch, self.ttl, force=force, always_write=True
        )
        self._foreground = asyncio.ensure_future(asyncio.shield(shared))
        foreground = self._foreground

        try:
            result = await foreground
        except asyncio.CancelledError:
            if self._closed and foreground.cancelled():
                return FetchOutcome.CANCELLED
            raise
        except SiloCacheError as e:
            if not self._is_current(generation):
                return FetchOutcome.NETWORK_ERROR
            log_operation_error(
                logger,
                e,
                operation="load",
                context={"key": self.key},
                level=logging.WARNING,
            )
            if self._state.value is not None:
                # Keep the last known good value, surface the error as a banner
                self._publish(FetchStatus.READY, value=self._state.value, error=e, loading=False)
            else:
                self._publish(FetchStatus.ERROR, value=None, error=e, loading=False)
            return FetchOutcome.NETWORK_ERROR

        if not self._is_current(generation):
            return FetchOutcome.NETWORK_FETCH

        if not result.changed:
            # Joined a background refresh that skipped the write; refresh the stamp
            await self._fetcher._persist(self.key, result.value, self.ttl)

        if self._is_current(generation):
            self._publish(FetchStatus.READY, value=result.value, error=None, loading=False)
        return FetchOutcome.NETWORK_FETCH

    # ---------------------------------------------------------------- lifecycle

    def dismiss_error(self) -> None:
        """Clear the error banner shown next to a retained value."""
        if self._closed or self._state.error is None:
            return
        if self._state.status is FetchStatus.READY:
            self._publish(FetchStatus.READY, value=self._state.value, error=None, loading=False)

    async def wait_for_background(self) -> None:
        """Wait until this query's pending background refresh has finished."""
        task = self._background
        if task is not None and not task.done():
            await asyncio.wait([task])

    def close(self) -> None:
        """Unmount: stop waiting for pending fetches and never publish again.

        In-flight network requests keep running for other joiners and still
        persist their results.
        """
        if self._closed:
            return
        self._closed = True
        for task in (self._background, self._foreground):
            if task is not None and not task.done():
                task.cancel()
        self._listeners.clear()
        logger.debug("Query closed: key=%s", self.key)

    def __enter__(self) -> Query:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def __aenter__(self) -> Query:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------ helpers

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _publish(
        self,
        status: FetchStatus,
        *,
        value: Any,
        error: SiloCacheError | None,
        loading: bool,
    ) -> None:
        if self._closed:
            return
        self._machine.transition(status)
        self._state = replace(
            self._state, status=status, value=value, error=error, loading=loading
        )
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:  # noqa: BLE001
                logger.warning("State listener failed for key %s", self.key, exc_info=True)


class RevalidatingFetcher:
    """Shared stale-while-revalidate helper built on a KeyStore.

    Args:
        store: KeyStore holding the cached payloads
        retry_count: Retries after a failed network attempt
        retry_delay: First retry delay in seconds, doubled per attempt
        stale_policy: Serve expired entries while revalidating, or refetch them
        default_ttl: TTL used when a call does not pass one
        sleep: Coroutine used for retry delays

    Example:
        >>> fetcher = RevalidatingFetcher(KeyStore(MemoryStorage()))
        >>> query = await fetcher.load_with_cache("orders:today", fetch_orders, TTL.SHORT)
        >>> query.value
        [{'id': 1}]
    """

    def __init__(
        self,
        store: KeyStore,
        *,
        retry_count: int = FetcherConfig.RETRY_COUNT,
        retry_delay: float = FetcherConfig.RETRY_DELAY,
        stale_policy: StalePolicy = FetcherConfig.STALE_POLICY,
        default_ttl: int = TTL.DEFAULT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if retry_count < 0:
            msg = f"retry_count must be non-negative, got {retry_count}"
            raise ValueError(msg)

        self.store = store
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self.stale_policy = StalePolicy(stale_policy)
        self.default_ttl = default_ttl
        self._sleep = sleep
        self._in_flight: dict[str, asyncio.Task[_FetchResult]] = {}
        # Bumped by forced fetches and invalidations; older fetches skip their write
        self._write_epochs: dict[str, int] = {}

    # ------------------------------------------------------------------ queries

    def watch(
        self,
        key: str,
        network_fetch: NetworkFetch,
        ttl: int | None = None,
        listener: StateListener | None = None,
    ) -> Query:
        """Create an idle query for ``key`` without loading it."""
        query = Query(self, key, network_fetch, self.default_ttl if ttl is None else ttl)
        if listener is not None:
            query.subscribe(listener)
        return query

    async def load_with_cache(
        self,
        key: str,
        network_fetch: NetworkFetch,
        ttl: int | None = None,
        force_refresh: bool = False,
        listener: StateListener | None = None,
    ) -> Query:
        """Create a query for ``key`` and load it."""
        query = self.watch(key, network_fetch, ttl, listener)
        await query.load(force_refresh=force_refresh)
        return query

    # ---------------------------------------------------------------- one-shot

    async def get_or_fetch(
        self,
        key: str,
        network_fetch: NetworkFetch,
        ttl: int | None = None,
        force_refresh: bool = False,
        stale_while_revalidate: bool = True,
    ) -> Any:
        """Return cached data for ``key`` or fetch, persist and return it.

        A stale entry is returned immediately while a background refresh runs
        when ``stale_while_revalidate`` is set; otherwise it is refetched.

        Raises:
            SiloCacheError: If the foreground fetch fails
        """
        ttl = self.default_ttl if ttl is None else ttl

        if not force_refresh:
            pending = self._in_flight.get(key)
            if pending is not None:
                self.store.statistics.record_deduplicated_fetch()
                return (await asyncio.shield(pending)).value

            entry = await self.store.get_entry(key)
            if entry is not None:
                if self.store.is_fresh(entry):
                    return entry.payload
                if stale_while_revalidate:
                    self._start_or_join(key, network_fetch, ttl, force=False, always_write=False)
                    return entry.payload

        shared = self._start_or_join(key, network_fetch, ttl, force=force_refresh, always_write=True)
        return (await asyncio.shield(shared)).value

    async def prefetch(
        self,
        key: str,
        network_fetch: NetworkFetch,
        ttl: int | None = None,
    ) -> bool:
        """Warm ``key`` in the background; failures are logged, not raised.

        Returns:
            True if the key now holds data
        """
        try:
            await self.get_or_fetch(key, network_fetch, ttl)
        except SiloCacheError as e:
            log_operation_error(
                logger, e, operation="prefetch", context={"key": key}, level=logging.WARNING
            )
            return False
        return True

    async def invalidate_queries(self, pattern: str) -> int:
        """Invalidate every cached key matching the regular expression ``pattern``."""
        removed = await self.store.invalidate_pattern(pattern)
        matcher = re.compile(pattern)
        # In-flight fetches for these keys must not write the old data back
        for key in list(self._in_flight):
            if matcher.search(key):
                self._bump_epoch(key)
        return removed

    def pending_keys(self) -> list[str]:
        """Keys with a network request in flight."""
        return [key for key, task in self._in_flight.items() if not task.done()]

    async def wait_for_pending(self) -> None:
        """Wait for every in-flight network request to settle."""
        tasks = [task for task in self._in_flight.values() if not task.done()]
        if tasks:
            await asyncio.wait(tasks)

    # ---------------------------------------------------------------- internals

    def _start_or_join(
        self,
        key: str,
        network_fetch: NetworkFetch,
        ttl: int,
        *,
        force: bool,
        always_write: bool,
    ) -> asyncio.Task[_FetchResult]:
        """Return the in-flight request for ``key``, starting one if needed.

        A forced request never joins; it supersedes the registered one.
        """
        pending = self._in_flight.get(key)
        if pending is not None and not pending.done() and not force:
            self.store.statistics.record_deduplicated_fetch()
            return pending

        if force:
            self._bump_epoch(key)
        epoch = self._write_epochs.get(key, 0)

        task = asyncio.ensure_future(
            self._fetch_and_reconcile(key, network_fetch, ttl, epoch, always_write)
        )
        task.add_done_callback(_consume_result)
        task.add_done_callback(lambda done, key=key: self._forget(key, done))
        self._in_flight[key] = task
        return task

    def _forget(self, key: str, task: asyncio.Task[_FetchResult]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    def _bump_epoch(self, key: str) -> None:
        self._write_epochs[key] = self._write_epochs.get(key, 0) + 1

    async def _fetch_and_reconcile(
        self,
        key: str,
        network_fetch: NetworkFetch,
        ttl: int,
        epoch: int,
        always_write: bool,
    ) -> _FetchResult:
        value = await self._fetch_with_retry(key, network_fetch)

        if self._write_epochs.get(key, 0) != epoch:
            # A forced fetch or an invalidation started after this one
            logger.debug("Skipping write of superseded fetch for key %s", key)
            return _FetchResult(value=value, changed=True)

        current = await self.store.get_entry(key)
        changed = current is None or not payloads_equal(current.payload, value)
        if changed or always_write:
            await self._persist(key, value, ttl)
        return _FetchResult(value=value, changed=changed or always_write)

    async def _persist(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.store.set(key, value, ttl)
        except SiloCacheError as e:
            # The fetched value is still published
            log_operation_error(
                logger, e, operation="persist", context={"key": key}, level=logging.WARNING
            )

    async def _fetch_with_retry(self, key: str, network_fetch: NetworkFetch) -> Any:
        """Call ``network_fetch`` with exponential backoff between attempts.

        Raises:
            SiloCacheError: The last failure, non-library exceptions wrapped as
                InfrastructureError(NETWORK_FETCH_FAILED)
        """
        attempt = 0
        while True:
            self.store.statistics.record_network_fetch()
            try:
                return await network_fetch()
            except SiloCacheError as e:
                last_error = e
            except Exception as e:  # noqa: BLE001
                last_error = InfrastructureError(
                    ErrorCode.NETWORK_FETCH_FAILED,
                    f"Network fetch failed: {e!s}",
                    ErrorContext(operation="network_fetch", key=key),
                    original_error=e,
                )

            self.store.statistics.record_network_error()
            if (
                last_error.code in NON_RETRYABLE_CODES
                or isinstance(last_error, DomainError)
                or attempt >= self.retry_count
            ):
                raise last_error

            delay = self.retry_delay * (2**attempt)
            logger.debug(
                "Fetch for key %s failed (attempt %d/%d), retrying in %.2fs",
                key,
                attempt + 1,
                self.retry_count + 1,
                delay,
            )
            await self._sleep(delay)
            attempt += 1
