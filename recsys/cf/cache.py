"""
In-process LRU cache shared by the similarity engine and the model manager.

Entries expire after an optional TTL and are evicted least-recently-used
once the size bound is reached. Every operation takes the cache lock, so a
single instance may be shared across executor threads.

Usage:
    from recsys.cf.cache import LRUCache
    cache = LRUCache(max_size=1000, ttl_seconds=300, name="item_similarity")
    cache.put(('wine', 42), neighbours)
    cache.invalidate(lambda key: key[0] == 'wine')
"""

from typing import Dict, List, Optional, Any, Tuple, Callable
from collections import OrderedDict
import threading
import logging
import time

logger = logging.getLogger(__name__)


# ============================================================================
# Cache
# ============================================================================

class LRUCache:
    """
    Bounded least-recently-used map with optional expiry.

    Features:
    - O(1) get/put
    - Optional TTL per cache
    - Predicate-based bulk invalidation
    - Hit/miss/eviction counters
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: Optional[float] = None,
        name: str = "cache",
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            max_size: Maximum number of entries
            ttl_seconds: Entry lifetime; None keeps entries until evicted
            name: Cache name for logging
            clock: Time source (seconds)
        """
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock

        self._entries: 'OrderedDict[Any, Tuple[Any, float]]' = OrderedDict()
        self._lock = threading.RLock()

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def _expired(self, stored_at: float) -> bool:
        return self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds

    def get(self, key: Any) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            value, stored_at = entry
            if self._expired(stored_at):
                del self._entries[key]
                self.misses += 1
                return None

            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def put(self, key: Any, value: Any) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock())
            self._entries.move_to_end(key)

            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"[{self.name}] evicted {evicted!r}")

    def delete(self, key: Any) -> bool:
        """Drop one key. True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate(self, predicate: Callable[[Any], bool]) -> int:
        """
        Remove every entry whose key satisfies predicate.

        Returns:
            Number of entries removed
        """
        with self._lock:
            doomed = [k for k in self._entries if predicate(k)]
            for k in doomed:
                del self._entries[k]

        if doomed:
            logger.debug(f"[{self.name}] invalidated {len(doomed)} entries")
        return len(doomed)

    def keys(self) -> List[Any]:
        """Snapshot of current keys, least recently used first."""
        with self._lock:
            return list(self._entries.keys())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._expired(entry[1])

    def stats(self) -> Dict[str, Any]:
        """Counters and occupancy snapshot."""
        with self._lock:
            total = self.hits + self.misses
            return {
                'name': self.name,
                'size': len(self._entries),
                'max_size': self.max_size,
                'ttl_seconds': self.ttl_seconds,
                'hits': self.hits,
                'misses': self.misses,
                'hit_rate': self.hits / total if total > 0 else 0.0,
                'evictions': self.evictions,
            }
