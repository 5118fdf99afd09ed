"""
Result cache for image-broker-python.

Provides:
- CacheKeyGenerator: Deterministic keys from normalized request fields
- ResultCache: TTL- and capacity-bound memo of successful results
- CacheStats: Hit/miss/eviction counters
"""

from image_broker.cache.key import CacheKey, CacheKeyGenerator
from image_broker.cache.manager import CacheConfig, CacheEntry, CacheStats, ResultCache

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheKey",
    "CacheKeyGenerator",
    "CacheStats",
    "ResultCache",
]
