"""
Response caching module for resilient-llm.

Provides a process-wide LRU cache with TTL for provider responses.
"""

from resilient_llm.cache.key import CacheKey, fingerprint
from resilient_llm.cache.response_cache import CacheConfig, CacheStats, ResponseCache

__all__ = [
    "CacheConfig",
    "CacheKey",
    "CacheStats",
    "ResponseCache",
    "fingerprint",
]
