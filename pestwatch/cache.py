"""
Time-bounded read-through cache for aggregation results.

Injected into the components that use it; there is no process-wide instance.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


def default_key(name: str, *args: Any, **kwargs: Any) -> Hashable:
    """Cache key from an operation name and its arguments."""
    return (name, args, tuple(sorted(kwargs.items())))


class TTLCache:
    """
    Simple in-memory cache with TTL expiration.

    Features:
    - TTL-based expiration (default 5 minutes)
    - Lazy eviction: expired entries are dropped on the next read
    - Pluggable key function
    - Hit/miss statistics
    """

    def __init__(
        self,
        ttl_minutes: float = 5,
        key_func: Callable[..., Hashable] = default_key,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize cache.

        Args:
            ttl_minutes: Time-to-live in minutes for cache entries
            key_func: Builds a key from (name, *args, **kwargs)
            clock: Time source (injectable for tests)
        """
        self.ttl = timedelta(minutes=ttl_minutes)
        self.key_func = key_func
        self._clock = clock
        self.cache: Dict[Hashable, Tuple[datetime, Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        """
        Get cached value if exists and not expired.

        Args:
            key: Cache key

        Returns:
            Cached data if valid, None otherwise
        """
        if key in self.cache:
            cached_at, data = self.cache[key]

            if self._clock() - cached_at < self.ttl:
                self.hits += 1
                return data
            else:
                # Expired, remove it
                del self.cache[key]

        self.misses += 1
        return None

    def set(self, key: Hashable, data: Any) -> None:
        """Store data in cache with current timestamp."""
        self.cache[key] = (self._clock(), data)

    def get_or_load(self, name: str, loader: Callable[[], Any], *args: Any, **kwargs: Any) -> Any:
        """Return the cached result for (name, args) or compute and store it."""
        key = self.key_func(name, *args, **kwargs)
        data = self.get(key)
        if data is None:
            data = loader()
            self.set(key, data)
        return data

    def invalidate(self) -> None:
        """Drop all entries, keeping statistics."""
        self.cache = {}

    def clear(self) -> None:
        """Clear all cache entries."""
        self.cache = {}
        self.hits = 0
        self.misses = 0

    def get_stats(self) -> dict:
        """Get cache statistics."""
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate:.1f}%",
            "total_entries": len(self.cache),
        }
