"""
Cache-related Type Definitions

Type aliases shared by the revalidating fetcher and the data preloader.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

# Zero-argument coroutine function producing a fresh payload
NetworkFetch = Callable[[], Awaitable[Any]]
