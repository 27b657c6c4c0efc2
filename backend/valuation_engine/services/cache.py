# backend/valuation_engine/services/cache.py
"""
Bounded TTL cache for computed valuation and performance series.

Series are recomputed on demand from stored bars, which is cheap per call
but adds up for dashboards polling several ranges. Entries are keyed by
region first so a recompute can drop everything for its region.
"""

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any

from valuation_engine.config import settings
from valuation_engine.services.constants import SERIES_CACHE_MAX_SIZE

logger = logging.getLogger(__name__)


class SeriesCache:
    """
    Thread-safe bounded LRU cache with TTL.

    Memory Safety:
        At most max_size entries. When full, the least recently used
        entry is evicted.

    Cache key format: "{region}:{kind}:{args...}"
    """

    def __init__(
            self,
            ttl_seconds: int | None = None,
            max_size: int = SERIES_CACHE_MAX_SIZE,
    ):
        self._cache: OrderedDict[str, tuple[datetime, Any]] = OrderedDict()
        self._ttl = timedelta(seconds=settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds)
        self._max_size = max_size
        self._lock = threading.Lock()

    @staticmethod
    def make_key(region: str, kind: str, *parts: object) -> str:
        """Generate cache key."""
        return ":".join([region, kind, *(str(p) for p in parts)])

    def get(self, key: str) -> Any | None:
        """
        Get cached value if present and not expired.

        Implements LRU by moving accessed entries to the end.
        """
        with self._lock:
            if key in self._cache:
                timestamp, value = self._cache[key]
                if datetime.now() - timestamp < self._ttl:
                    self._cache.move_to_end(key)
                    logger.debug(f"Cache hit for {key}")
                    return value
                del self._cache[key]
                logger.debug(f"Cache expired for {key}")
        return None

    def set(self, key: str, value: Any) -> None:
        """Store value, evicting the least recently used entry if full."""
        with self._lock:
            if key in self._cache:
                del self._cache[key]
            while len(self._cache) >= self._max_size:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]
                logger.debug(f"Cache evicted {oldest_key} (LRU)")
            self._cache[key] = (datetime.now(), value)
        logger.debug(f"Cached result for {key}")

    def invalidate(self, region: str) -> int:
        """
        Invalidate all cache entries for a region.

        Returns:
            Number of entries invalidated
        """
        prefix = f"{region}:"
        with self._lock:
            keys_to_delete = [k for k in self._cache if k.startswith(prefix)]
            for key in keys_to_delete:
                del self._cache[key]

        if keys_to_delete:
            logger.debug(f"Invalidated {len(keys_to_delete)} cache entries for {region}")
        return len(keys_to_delete)

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.debug(f"Cleared {count} cache entries")

    def size(self) -> int:
        """Return current number of cached entries."""
        with self._lock:
            return len(self._cache)
