"""Cache statistics collection.

Counters shared by the KeyStore and the revalidating fetcher.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class CacheMetrics:
    """Container for cache counters."""

    # KeyStore
    hits: int = 0
    misses: int = 0
    stale_reads: int = 0
    writes: int = 0
    evictions: int = 0
    invalidations: int = 0
    read_failures: int = 0
    write_failures: int = 0

    # Fetcher
    network_fetches: int = 0
    network_errors: int = 0
    deduplicated_fetches: int = 0
    background_updates: int = 0
    background_unchanged: int = 0


@dataclass
class CacheStatistics:
    """Thread-safe aggregator for cache metrics."""

    metrics: CacheMetrics = field(default_factory=CacheMetrics)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self.metrics, name, getattr(self.metrics, name) + amount)

    def record_cache_hit(self) -> None:
        self._increment("hits")

    def record_cache_miss(self) -> None:
        self._increment("misses")

    def record_stale_read(self) -> None:
        self._increment("stale_reads")

    def record_write(self) -> None:
        self._increment("writes")

    def record_eviction(self) -> None:
        self._increment("evictions")

    def record_invalidation(self, count: int = 1) -> None:
        self._increment("invalidations", count)

    def record_read_failure(self) -> None:
        self._increment("read_failures")

    def record_write_failure(self) -> None:
        self._increment("write_failures")

    def record_network_fetch(self) -> None:
        self._increment("network_fetches")

    def record_network_error(self) -> None:
        self._increment("network_errors")

    def record_deduplicated_fetch(self) -> None:
        self._increment("deduplicated_fetches")

    def record_background_result(self, *, changed: bool) -> None:
        self._increment("background_updates" if changed else "background_unchanged")

    def get_cache_hit_ratio(self) -> float:
        """Return hits / (hits + misses), 0.0 when nothing was read."""
        with self._lock:
            total = self.metrics.hits + self.metrics.misses
            return self.metrics.hits / total if total else 0.0

    def to_dict(self) -> dict[str, int | float]:
        with self._lock:
            data: dict[str, int | float] = dict(asdict(self.metrics))
        data["hit_ratio"] = self.get_cache_hit_ratio()
        return data

    def reset(self) -> None:
        with self._lock:
            self.metrics = CacheMetrics()
        logger.debug("Cache statistics reset")
