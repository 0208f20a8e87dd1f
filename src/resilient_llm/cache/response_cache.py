"""
Response cache with TTL and LRU eviction.

The cache is process-wide and shared by every provider's worker thread, so it
is guarded by a ``threading.Lock`` rather than an asyncio lock. Lookup and
insert are O(1) on an ``OrderedDict``.
"""

from __future__ import annotations

import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from resilient_llm.cache.key import CacheKey, fingerprint
from resilient_llm.errors import ValidationError
from resilient_llm.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from resilient_llm.types import LlmResponse

logger = get_logger("resilient_llm.cache")


@dataclass
class CacheConfig:
    """Cache configuration.

    Attributes:
        enabled: Whether caching is enabled
        max_size: Maximum number of entries before LRU eviction
        ttl_seconds: Time-to-live measured from insertion
    """

    enabled: bool = True
    max_size: int = 500
    ttl_seconds: float = 300.0

    def __post_init__(self) -> None:
        if self.max_size <= 0:
            raise ValidationError(
                "cache max_size must be positive", field="cache.max_size", actual=self.max_size
            )
        if self.ttl_seconds <= 0:
            raise ValidationError(
                "cache ttl must be positive", field="cache.ttl_seconds", actual=self.ttl_seconds
            )

    @classmethod
    def disabled(cls) -> CacheConfig:
        """Create disabled cache config."""
        return cls(enabled=False)

    @classmethod
    def from_env(cls, base: CacheConfig | None = None) -> CacheConfig:
        """Apply RESILIENT_LLM_CACHE_* environment overrides."""
        base = base or cls()
        return cls(
            enabled=os.getenv("RESILIENT_LLM_CACHE_ENABLED", str(base.enabled)).lower()
            not in ("0", "false", "no"),
            max_size=int(os.getenv("RESILIENT_LLM_CACHE_MAX_SIZE", base.max_size)),
            ttl_seconds=float(os.getenv("RESILIENT_LLM_CACHE_TTL_SECS", base.ttl_seconds)),
        )


@dataclass
class CacheStats:
    """Cache statistics.

    Counters are updated without extra synchronisation on the read path and
    are eventually consistent.
    """

    hits: int = 0
    misses: int = 0
    puts: int = 0
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
            "puts": self.puts,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
        }


@dataclass
class _Entry:
    value: LlmResponse
    written_at: float


class ResponseCache:
    """Bounded, time-expiring response cache.

    Example:
        >>> cache = ResponseCache(CacheConfig(max_size=500, ttl_seconds=300))
        >>> key = fingerprint("openai", "gpt-3.5-turbo", "mine some iron")
        >>> cache.put(key, response)
        >>> cache.get(key).from_cache
        True
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            config: Cache configuration
            clock: Monotonic time source (seconds)
        """
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self._stats = CacheStats()
        logger.info(
            "Response cache initialized",
            max_size=self._config.max_size,
            ttl_seconds=self._config.ttl_seconds,
            enabled=self._config.enabled,
        )

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def size(self) -> int:
        """Approximate number of entries, including not-yet-evicted expired ones."""
        return len(self._entries)

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def get(self, key: CacheKey | str) -> LlmResponse | None:
        """Look up a response.

        Args:
            key: Fingerprint

        Returns:
            Cached response (``from_cache=True``) or None
        """
        if not self._config.enabled:
            self._stats.misses += 1
            return None

        raw = str(key)
        with self._lock:
            entry = self._entries.get(raw)
            if entry is not None and self._is_expired(entry):
                del self._entries[raw]
                self._stats.expirations += 1
                entry = None
            if entry is not None:
                self._entries.move_to_end(raw)

        if entry is None:
            self._stats.misses += 1
            logger.debug("Cache miss", key=raw[:8])
            return None

        self._stats.hits += 1
        logger.debug("Cache hit", key=raw[:8])
        return entry.value

    def put(self, key: CacheKey | str, response: LlmResponse) -> None:
        """Store a response. The stored copy always has ``from_cache=True``.

        Args:
            key: Fingerprint
            response: Response to store
        """
        if not self._config.enabled:
            return

        raw = str(key)
        stored = response.with_cache_flag(True)
        with self._lock:
            if raw in self._entries:
                self._entries.move_to_end(raw)
            self._entries[raw] = _Entry(value=stored, written_at=self._clock())
            while len(self._entries) > self._config.max_size:
                self._entries.popitem(last=False)
                self._stats.evictions += 1
        self._stats.puts += 1
        logger.debug("Cached response", key=raw[:8], tokens=response.tokens_used)

    def get_for(self, prompt: str, model: str, provider_id: str) -> LlmResponse | None:
        """Look up by request fields instead of a precomputed key."""
        return self.get(fingerprint(provider_id, model, prompt))

    def put_for(
        self, prompt: str, model: str, provider_id: str, response: LlmResponse
    ) -> CacheKey:
        """Store by request fields. Returns the key used."""
        key = fingerprint(provider_id, model, prompt)
        self.put(key, response)
        return key

    def invalidate(self, key: CacheKey | str) -> bool:
        """Remove one entry. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(str(key), None) is not None

    def clear(self) -> None:
        """Invalidate all entries."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info("Cache cleared", removed=removed)

    def log_stats(self) -> None:
        stats = self._stats
        logger.info(
            "Response cache stats",
            size=self.size,
            max_size=self._config.max_size,
            hit_rate=round(stats.hit_rate * 100, 2),
            hits=stats.hits,
            misses=stats.misses,
            evictions=stats.evictions,
        )

    def _is_expired(self, entry: _Entry) -> bool:
        return self._clock() - entry.written_at >= self._config.ttl_seconds
