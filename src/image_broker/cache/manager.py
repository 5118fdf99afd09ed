"""
Result cache for generation results.

In-memory, TTL-bound and capacity-bound. Expiry is lazy (checked on lookup);
capacity pressure evicts the least recently used entry first.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from image_broker.cache.key import CacheKey, CacheKeyGenerator

if TYPE_CHECKING:
    from collections.abc import Callable

    from image_broker.types.request import GenerationRequest
    from image_broker.types.result import GenerationResult


@dataclass
class CacheStats:
    """Cache statistics.

    Attributes:
        hits: Number of cache hits
        misses: Number of cache misses
        sets: Number of cache sets
        evictions: Number of capacity evictions
        expirations: Number of entries dropped for age
    """

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Get cache hit rate (0.0 to 1.0)."""
        total = self.total_requests
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
        }

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.evictions = 0
        self.expirations = 0


@dataclass
class CacheConfig:
    """Cache configuration.

    Attributes:
        enabled: Whether caching is enabled
        ttl_seconds: Entry lifetime in seconds
        max_entries: Maximum number of entries
    """

    enabled: bool = True
    ttl_seconds: float = 300.0
    max_entries: int = 100

    @classmethod
    def disabled(cls) -> CacheConfig:
        """Create disabled cache config."""
        return cls(enabled=False)


@dataclass
class CacheEntry:
    """One cached result.

    Attributes:
        key: Cache key string
        value: The cached result
        created_at: Insertion time on the cache clock
        hits: Number of lookups served
    """

    key: str
    value: GenerationResult
    created_at: float
    hits: int = 0

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at >= ttl


class ResultCache:
    """Memoizes GenerationResults by request key.

    All table access happens under one asyncio.Lock; no await occurs while
    it is held. Only successful results are ever passed to ``put``.

    Example:
        >>> cache = ResultCache(CacheConfig(ttl_seconds=300, max_entries=100))
        >>> key = cache.key_for(request, "openai")
        >>> if (hit := await cache.get(key)) is not None:
        ...     return hit
        >>> await cache.put(key, result)
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        key_generator: CacheKeyGenerator | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize result cache.

        Args:
            config: Cache configuration
            key_generator: Key generator (defaults to CacheKeyGenerator())
            clock: Monotonic clock (injectable for tests)
        """
        self._config = config or CacheConfig()
        self._key_generator = key_generator or CacheKeyGenerator()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    def key_for(
        self,
        request: GenerationRequest,
        backend: str,
        *,
        width: int | None = None,
        height: int | None = None,
    ) -> CacheKey:
        """Derive the cache key for a request served by ``backend``."""
        return self._key_generator.generate(request, backend, width=width, height=height)

    async def get(self, key: CacheKey | str) -> GenerationResult | None:
        """Look up a result; expired entries count as absent."""
        if not self._config.enabled:
            self._stats.misses += 1
            return None

        async with self._lock:
            entry = self._entries.get(str(key))
            if entry is None:
                self._stats.misses += 1
                return None
            if entry.is_expired(self._clock(), self._config.ttl_seconds):
                del self._entries[entry.key]
                self._stats.expirations += 1
                self._stats.misses += 1
                return None

            self._entries.move_to_end(entry.key)
            entry.hits += 1
            self._stats.hits += 1
            return entry.value

    async def put(self, key: CacheKey | str, result: GenerationResult) -> None:
        """Store a result, evicting least recently used entries over capacity."""
        if not self._config.enabled or self._config.max_entries <= 0:
            return

        async with self._lock:
            key_str = str(key)
            self._entries[key_str] = CacheEntry(key=key_str, value=result, created_at=self._clock())
            self._entries.move_to_end(key_str)
            self._stats.sets += 1
            while len(self._entries) > self._config.max_entries:
                self._entries.popitem(last=False)
                self._stats.evictions += 1

    async def invalidate(self, key: CacheKey | str) -> bool:
        """Drop one entry.

        Returns:
            True if an entry was removed
        """
        async with self._lock:
            return self._entries.pop(str(key), None) is not None

    async def clear(self) -> None:
        """Clear all cached entries and statistics."""
        async with self._lock:
            self._entries.clear()
            self._stats.reset()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._config.enabled
