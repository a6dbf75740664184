"""Background warm-up and predictive prefetching.

The preloader fills the cache before screens ask for data: a tiered bulk
preload after sign-in, and a priority queue fed by navigation patterns.
All writes go through the RevalidatingFetcher so concurrent loads of the
same key share one request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from functools import partial
from typing import Any, Awaitable, Callable

from silo_cache.services.api_client import ApiClient, TokenProvider
from silo_cache.services.cache_keys import CacheKeys
from silo_cache.services.revalidating_fetcher import RevalidatingFetcher
from silo_cache.shared.constants import TTL, PreloaderConfig
from silo_cache.shared.errors import (
    ErrorCode,
    InfrastructureError,
    SiloCacheError,
)
from silo_cache.shared.logging import (
    log_operation_error,
    log_operation_start,
    log_operation_success,
)
from silo_cache.shared.types import NetworkFetch

logger = logging.getLogger(__name__)


class PrefetchPriority(IntEnum):
    """Queue order; lower values are fetched first."""

    CRITICAL = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3


class NetworkState(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    NONE = "none"


# Priorities worth spending a metered connection on
CELLULAR_PRIORITIES = frozenset({PrefetchPriority.CRITICAL, PrefetchPriority.HIGH})


@dataclass(frozen=True)
class PrefetchItem:
    key: str
    network_fetch: NetworkFetch
    priority: PrefetchPriority = PrefetchPriority.MEDIUM
    ttl: int = TTL.MEDIUM


@dataclass(frozen=True)
class DataNeed:
    """Data a screen reads on open."""

    key: str
    endpoint: str
    priority: PrefetchPriority
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PreloadTarget:
    """One resource loaded by ``preload_all``.

    Business-scoped targets build their key from the business id and format
    it into ``endpoint``.
    """

    name: str
    key: Callable[..., str]
    endpoint: str
    priority: PrefetchPriority
    ttl: int
    data_key: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    business_scoped: bool = False

    def resolve(self, business_id: str | int | None) -> tuple[str, str] | None:
        """Return the concrete ``(key, endpoint)``, or None if unresolvable."""
        if not self.business_scoped:
            return self.key(), self.endpoint
        if business_id is None:
            return None
        return (
            self.key(business_id),
            self.endpoint.format(business_id=business_id),
        )


# Screens usually opened after the given one
SCREEN_PATTERNS: dict[str, list[str]] = {
    "OwnerDashboard": ["Orders", "Inventory", "Products", "Settings"],
    "StaffDashboard": ["Orders", "Inventory", "StaffManagement"],
    "PMDashboard": ["Orders", "Inventory", "StaffManagement", "Settings"],
    "POSTerminal": ["Orders", "Settings"],
    "Orders": ["POSTerminal", "OwnerDashboard"],
    "Inventory": ["Items", "Products", "PODetail"],
    "Products": ["Items", "Categories", "Bundles"],
    "Items": ["Products", "Inventory"],
}

SCREEN_DATA_NEEDS: dict[str, list[DataNeed]] = {
    "Orders": [
        DataNeed(CacheKeys.management_orders(), "/pos/orders", PrefetchPriority.HIGH, {"limit": 50}),
    ],
    "Inventory": [
        DataNeed(CacheKeys.inventory_stock(), "/inventory-stock/stock", PrefetchPriority.HIGH),
        DataNeed(CacheKeys.vendors(), "/inventory-stock/vendors", PrefetchPriority.MEDIUM),
    ],
    "Products": [
        DataNeed(
            CacheKeys.store_products(),
            "/store-products",
            PrefetchPriority.HIGH,
            {"page": 1, "limit": 20},
        ),
        DataNeed(CacheKeys.categories(), "/categories", PrefetchPriority.MEDIUM),
    ],
    "Items": [
        DataNeed(
            CacheKeys.raw_items(),
            "/inventory/items",
            PrefetchPriority.HIGH,
            {"page": 1, "limit": 30},
        ),
        DataNeed(CacheKeys.composite_items(), "/inventory/composite-items", PrefetchPriority.HIGH),
    ],
    "PODetail": [
        DataNeed(
            CacheKeys.purchase_orders(), "/inventory-stock/purchase-orders", PrefetchPriority.HIGH
        ),
    ],
    "StaffManagement": [
        DataNeed(CacheKeys.staff_users(), "/business-users", PrefetchPriority.HIGH),
    ],
    "Categories": [
        DataNeed(CacheKeys.categories(), "/categories", PrefetchPriority.HIGH),
    ],
    "Bundles": [
        DataNeed(CacheKeys.bundles(), "/bundles", PrefetchPriority.HIGH),
        DataNeed(
            CacheKeys.store_products(),
            "/store-products",
            PrefetchPriority.MEDIUM,
            {"page": 1, "limit": 20},
        ),
    ],
    "DeliveryPartners": [
        DataNeed(CacheKeys.delivery_partners(), "/delivery/partners", PrefetchPriority.MEDIUM),
    ],
    "Tables": [
        DataNeed(CacheKeys.tables(), "/tables", PrefetchPriority.MEDIUM),
    ],
    "Drivers": [
        DataNeed(CacheKeys.drivers(), "/drivers", PrefetchPriority.MEDIUM),
    ],
    "Discounts": [
        DataNeed(CacheKeys.discounts(), "/discounts", PrefetchPriority.MEDIUM),
    ],
}

PRELOAD_TARGETS: list[PreloadTarget] = [
    PreloadTarget(
        "products",
        CacheKeys.products,
        "/store-products",
        PrefetchPriority.CRITICAL,
        TTL.MEDIUM,
        data_key="data",
    ),
    PreloadTarget(
        "categories",
        CacheKeys.categories,
        "/categories",
        PrefetchPriority.CRITICAL,
        TTL.LONG,
        data_key="data",
    ),
    PreloadTarget(
        "business_details",
        CacheKeys.business,
        "/businesses/{business_id}",
        PrefetchPriority.HIGH,
        TTL.LONG,
        data_key="business",
        business_scoped=True,
    ),
    PreloadTarget(
        "branches",
        CacheKeys.branches,
        "/businesses/{business_id}/branches",
        PrefetchPriority.HIGH,
        TTL.LONG,
        data_key="branches",
        business_scoped=True,
    ),
    PreloadTarget(
        "dashboard_stats",
        partial(CacheKeys.dashboard, "today"),
        "/analytics/dashboard",
        PrefetchPriority.LOW,
        TTL.SHORT,
        data_key="stats",
        params={"period": "today"},
    ),
]


class DataPreloader:
    """Warms the cache ahead of navigation.

    Args:
        fetcher: Fetcher whose KeyStore receives the preloaded data
        client: API client used to build network fetches
        token_provider: Auth token source; defaults to the client's
        history_limit: Navigation history entries kept
        request_interval: Pause in seconds between queued requests
        preload_interval_ms: Minimum time between two bulk preloads
        network_state: Initial connectivity
        sleep: Coroutine used for the pause between requests
    """

    def __init__(
        self,
        fetcher: RevalidatingFetcher,
        client: ApiClient,
        *,
        token_provider: TokenProvider | None = None,
        history_limit: int = PreloaderConfig.HISTORY_LIMIT,
        request_interval: float = PreloaderConfig.REQUEST_INTERVAL,
        preload_interval_ms: int = PreloaderConfig.PRELOAD_INTERVAL,
        network_state: NetworkState = NetworkState.WIFI,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.store = fetcher.store
        self.client = client
        self.token_provider = token_provider or client.token_provider
        self.history_limit = history_limit
        self.request_interval = request_interval
        self.preload_interval_ms = preload_interval_ms
        self.network_state = NetworkState(network_state)
        self._sleep = sleep

        self._queue: list[PrefetchItem] = []
        self._prefetching = False
        self._history: list[str] | None = None
        self._preload_task: asyncio.Task[int] | None = None

    # ---------------------------------------------------------------- queue

    @property
    def queued_keys(self) -> list[str]:
        return [item.key for item in self._queue]

    def set_network_state(self, state: NetworkState) -> None:
        self.network_state = NetworkState(state)

    def queue_prefetch(self, item: PrefetchItem) -> bool:
        """Queue ``item`` unless its key is already queued.

        Returns:
            True if the item was added
        """
        if any(queued.key == item.key for queued in self._queue):
            return False

        self._queue.append(item)
        # sort is stable, so equal priorities keep their arrival order
        self._queue.sort(key=lambda queued: queued.priority)
        return True

    async def process_prefetch_queue(self) -> int:
        """Fetch queued items in priority order.

        Only one runner drains the queue at a time; a concurrent call
        returns immediately. Keys that already hold fresh data are skipped,
        as are priorities not allowed on the current network.

        Returns:
            Number of items fetched and stored
        """
        if self._prefetching or not self._queue:
            return 0

        if self.network_state is NetworkState.NONE:
            logger.info("No network, skipping prefetch of %d items", len(self._queue))
            return 0

        self._prefetching = True
        fetched = 0
        try:
            while self._queue:
                item = self._queue.pop(0)

                if (
                    self.network_state is NetworkState.CELLULAR
                    and item.priority not in CELLULAR_PRIORITIES
                ):
                    logger.debug("Skipping %s prefetch on cellular: %s", item.priority.name, item.key)
                    continue

                if await self.store.get(item.key) is not None:
                    continue

                try:
                    await self.fetcher.get_or_fetch(
                        item.key,
                        item.network_fetch,
                        item.ttl,
                        stale_while_revalidate=False,
                    )
                except SiloCacheError as e:
                    log_operation_error(
                        logger,
                        e,
                        operation="prefetch",
                        context={"key": item.key},
                        level=logging.WARNING,
                    )
                else:
                    fetched += 1
                    logger.debug("Prefetched: %s", item.key)

                if self._queue:
                    await self._sleep(self.request_interval)
        finally:
            self._prefetching = False

        return fetched

    def queue_screens(self, screens: list[str]) -> int:
        """Queue the data needs of ``screens``; returns the number queued."""
        queued = 0
        for screen in screens:
            for need in SCREEN_DATA_NEEDS.get(screen, ()):
                item = PrefetchItem(
                    key=need.key,
                    network_fetch=self.client.fetcher(need.endpoint, params=need.params or None),
                    priority=need.priority,
                    ttl=TTL.MEDIUM,
                )
                if self.queue_prefetch(item):
                    queued += 1
        return queued

    async def prefetch(self, screens: list[str]) -> int:
        """Prefetch the data of ``screens``; returns the number of items fetched."""
        self.queue_screens(screens)
        return await self.process_prefetch_queue()

    # ------------------------------------------------------------ navigation

    async def navigation_history(self) -> list[str]:
        if self._history is None:
            stored = await self.store.get(PreloaderConfig.NAVIGATION_HISTORY_KEY)
            self._history = [screen for screen in stored or [] if isinstance(screen, str)]
        return self._history

    async def record_screen_visit(self, screen: str) -> int:
        """Record a visit to ``screen`` and prefetch for the likely next screens.

        Returns:
            Number of items fetched
        """
        history = await self.navigation_history()
        history.append(screen)
        del history[: -self.history_limit]

        try:
            await self.store.set(
                PreloaderConfig.NAVIGATION_HISTORY_KEY, list(history), TTL.INFINITE
            )
        except SiloCacheError as e:
            log_operation_error(
                logger, e, operation="save_navigation_history", level=logging.WARNING
            )

        return await self.prefetch(self.predict_next_screens(screen))

    def predict_next_screens(self, screen: str) -> list[str]:
        """Static successors of ``screen`` followed by the personal ones, deduplicated."""
        candidates = SCREEN_PATTERNS.get(screen, []) + self.analyze_personal_patterns(screen)
        return list(dict.fromkeys(candidates))

    def analyze_personal_patterns(self, screen: str) -> list[str]:
        """Screens that most often followed ``screen`` in the history, most frequent first."""
        history = self._history or []
        followers = Counter(
            following for current, following in zip(history, history[1:]) if current == screen
        )
        return [
            name for name, _ in followers.most_common(PreloaderConfig.PERSONAL_PATTERN_LIMIT)
        ]

    # ------------------------------------------------------------- bulk load

    async def preload_all(self, business_id: str | int | None = None) -> int:
        """Load every preload target, tier by tier.

        Skipped without an auth token or when the previous preload is more
        recent than ``preload_interval_ms``. Concurrent calls share one run.

        Returns:
            Number of targets cached, 0 when skipped
        """
        if self._preload_task is None or self._preload_task.done():
            self._preload_task = asyncio.ensure_future(self._perform_preload(business_id))
        return await asyncio.shield(self._preload_task)

    async def _perform_preload(self, business_id: str | int | None) -> int:
        token = await self.token_provider.get_token() if self.token_provider else None
        if not token:
            logger.info("No auth token, skipping preload")
            return 0

        if await self.store.get(PreloaderConfig.LAST_PRELOAD_KEY) is not None:
            logger.info("Previous preload still fresh, skipping preload")
            return 0

        log_operation_start(logger, "preload_all", {"business_id": business_id})
        start = time.perf_counter()

        loaded = 0
        for priority in PrefetchPriority:
            tier = [target for target in PRELOAD_TARGETS if target.priority is priority]
            if tier:
                results = await asyncio.gather(
                    *(self._preload_target(target, business_id) for target in tier)
                )
                loaded += sum(results)

        try:
            await self.store.set(
                PreloaderConfig.LAST_PRELOAD_KEY,
                self.store.clock(),
                self.preload_interval_ms,
            )
        except SiloCacheError as e:
            log_operation_error(logger, e, operation="preload_marker", level=logging.WARNING)

        log_operation_success(
            logger,
            "preload_all",
            (time.perf_counter() - start) * 1000,
            result_info={"loaded": loaded, "targets": len(PRELOAD_TARGETS)},
        )
        return loaded

    async def _preload_target(self, target: PreloadTarget, business_id: str | int | None) -> bool:
        resolved = target.resolve(business_id)
        if resolved is None:
            logger.debug("Skipping %s preload without a business id", target.name)
            return False

        key, endpoint = resolved
        fetch = self.client.fetcher(endpoint, params=target.params or None, data_key=target.data_key)

        async def fetch_target() -> Any:
            value = await fetch()
            if value is None:
                raise InfrastructureError(
                    ErrorCode.API_INVALID_RESPONSE,
                    f"{endpoint} returned no '{target.data_key}' data",
                )
            return value

        try:
            await self.fetcher.get_or_fetch(key, fetch_target, target.ttl, force_refresh=True)
        except SiloCacheError as e:
            log_operation_error(
                logger,
                e,
                operation="preload",
                context={"target": target.name, "key": key},
                level=logging.INFO,
            )
            return False
        return True

    async def refresh_cache(self, business_id: str | int | None = None) -> int:
        """Forget the last preload time and preload again."""
        await self.store.invalidate(PreloaderConfig.LAST_PRELOAD_KEY)
        return await self.preload_all(business_id)

    async def on_app_foreground(self, business_id: str | int | None = None) -> int:
        """Refetch critical targets that are missing or stale.

        Returns:
            Number of items fetched
        """
        for target in PRELOAD_TARGETS:
            if target.priority is not PrefetchPriority.CRITICAL:
                continue
            resolved = target.resolve(business_id)
            if resolved is None:
                continue

            key, endpoint = resolved
            entry = await self.store.get_entry(key)
            if entry is not None and self.store.is_fresh(entry):
                continue

            self.queue_prefetch(
                PrefetchItem(
                    key=key,
                    network_fetch=self.client.fetcher(
                        endpoint, params=target.params or None, data_key=target.data_key
                    ),
                    priority=PrefetchPriority.CRITICAL,
                    ttl=target.ttl,
                )
            )

        return await self.process_prefetch_queue()

    # ----------------------------------------------------------------- access

    async def get_cached(
        self,
        key: str,
        network_fetch: NetworkFetch,
        ttl: int = TTL.MEDIUM,
    ) -> Any | None:
        """Cached data for ``key`` (stale data is revalidated), None on failure."""
        try:
            return await self.fetcher.get_or_fetch(
                key, network_fetch, ttl, stale_while_revalidate=True
            )
        except SiloCacheError as e:
            log_operation_error(
                logger, e, operation="get_cached", context={"key": key}, level=logging.WARNING
            )
            return None

    async def clear_cache(self) -> None:
        """Clear the cache namespace, including the history and preload marker."""
        await self.store.clear()
        self._history = []
        logger.info("Preloader cache cleared")
