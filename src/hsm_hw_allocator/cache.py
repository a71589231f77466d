"""Thread-safe keyed cache with throttling for inventory scrapes.

Keeps one entry per key (a group label for the metrics collector) and
returns the cached value while it is younger than the throttle window, so
frequent scrapes do not turn into inventory queries for every member node.
"""

import time
from collections.abc import Callable, Hashable
from threading import Lock
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class AtomicThrottledCache(Generic[K, T]):
    """Thread-safe per-key cache with throttling to prevent excessive API queries.

    A None result is not cached, the next call for that key fetches again.
    """

    def __init__(self, limit: float):
        """Initialize the cache.

        Args:
            limit: Minimum seconds between refreshes of the same key.
        """
        self._lock = Lock()
        self._limit = limit
        self._entries: dict[K, tuple[float, T]] = {}

    def fetch_or_throttle(
        self,
        key: K,
        fetch_func: Callable[[], T],
    ) -> tuple[T, float | None]:
        """Fetch data for a key or return its cached data if still fresh.

        Args:
            key: Cache key.
            fetch_func: Function to fetch fresh data for the key.

        Returns:
            Tuple of (data, fetch_duration) where:
            - data: Cached or fresh data of type T
            - fetch_duration: Duration in seconds if fetched, None if cache hit
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                fetched_at, cached = entry
                elapsed = time.time() - fetched_at
                if elapsed < self._limit:
                    logger.debug("Using cached data", key=key, age_seconds=round(elapsed, 2))
                    return cached, None

            start = time.time()
            data = fetch_func()
            duration = time.time() - start
            if data is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = (time.time(), data)
            logger.debug("Fetched fresh data", key=key, duration_seconds=duration)
            return data, duration

    def invalidate(self, key: K) -> None:
        """Drop the cached entry of a key."""
        with self._lock:
            self._entries.pop(key, None)
