"""
Per-provider resilience state.

Exactly one rate limiter, bulkhead and circuit breaker exist per provider
identifier. They are created on first use and shared by every executor for
that provider for the life of the registry.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from resilient_llm.resilience.bulkhead import Bulkhead, BulkheadConfig
from resilient_llm.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from resilient_llm.resilience.rate_limiter import RateLimiter, RateLimiterConfig
from resilient_llm.telemetry import get_logger

logger = get_logger("resilient_llm.resilience.registry")


@dataclass
class ProviderGuards:
    """The guard triple for one provider."""

    provider_id: str
    rate_limiter: RateLimiter
    bulkhead: Bulkhead
    circuit_breaker: CircuitBreaker

    def get_stats(self) -> dict[str, Any]:
        breaker = self.circuit_breaker.get_stats()
        return {
            "rate_limiter": self.rate_limiter.get_stats(),
            "bulkhead": self.bulkhead.get_stats(),
            "circuit_breaker": {
                "state": breaker.state.value,
                "failure_rate": breaker.failure_rate,
                "buffered_calls": breaker.buffered_calls,
                "failed_calls": breaker.failed_calls,
                "rejected_requests": breaker.rejected_requests,
                "state_changes": breaker.state_changes,
            },
        }


class ResilienceRegistry:
    """Lazily created, shared guard triples keyed by provider id.

    Example:
        >>> registry = ResilienceRegistry()
        >>> guards = registry.guards_for("groq")
        >>> guards is registry.guards_for("groq")
        True
    """

    def __init__(
        self,
        rate_limiter: RateLimiterConfig | None = None,
        bulkhead: BulkheadConfig | None = None,
        circuit_breaker: CircuitBreakerConfig | None = None,
    ) -> None:
        self._rate_limiter_config = rate_limiter or RateLimiterConfig()
        self._bulkhead_config = bulkhead or BulkheadConfig()
        self._breaker_config = circuit_breaker or CircuitBreakerConfig()
        self._guards: dict[str, ProviderGuards] = {}
        self._lock = threading.Lock()

    def guards_for(self, provider_id: str) -> ProviderGuards:
        """Get or create the guards for a provider."""
        guards = self._guards.get(provider_id)
        if guards is not None:
            return guards

        with self._lock:
            guards = self._guards.get(provider_id)
            if guards is None:
                guards = ProviderGuards(
                    provider_id=provider_id,
                    rate_limiter=RateLimiter(self._rate_limiter_config, name=provider_id),
                    bulkhead=Bulkhead(self._bulkhead_config, name=provider_id),
                    circuit_breaker=CircuitBreaker(self._breaker_config, name=provider_id),
                )
                self._guards[provider_id] = guards
                logger.info("Created resilience guards", provider=provider_id)
        return guards

    def providers(self) -> list[str]:
        with self._lock:
            return list(self._guards)

    def get_stats(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            snapshot = list(self._guards.values())
        return {guards.provider_id: guards.get_stats() for guards in snapshot}

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._guards

    def __len__(self) -> int:
        return len(self._guards)
