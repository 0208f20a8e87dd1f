"""
Resilience patterns for resilient-llm.

Provides:
- RateLimiter: Fixed-window admission control with FIFO waiters
- Bulkhead: Per-provider concurrency limit
- CircuitBreaker: Failure-rate circuit breaker
- RetryPolicy: Exponential backoff retry
- FallbackGenerator: Pattern-matching degraded-mode responses
- ResilienceRegistry: Shared guard triples per provider
- ResilientExecutor: The ordered pipeline around a provider client
"""

from resilient_llm.resilience.bulkhead import Bulkhead, BulkheadConfig, BulkheadPermit
from resilient_llm.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitStats,
)
from resilient_llm.resilience.executor import (
    ExecutionStats,
    ResilientExecutor,
    ResponseSource,
    Stage,
)
from resilient_llm.resilience.fallback import (
    DEFAULT_PATTERNS,
    FALLBACK_MODEL,
    FALLBACK_PROVIDER_ID,
    FallbackGenerator,
    FallbackPattern,
)
from resilient_llm.resilience.rate_limiter import RateLimiter, RateLimiterConfig
from resilient_llm.resilience.registry import ProviderGuards, ResilienceRegistry
from resilient_llm.resilience.retry import (
    JitterStrategy,
    RetryAttempt,
    RetryConfig,
    RetryPolicy,
    RetryResult,
    with_retry,
)

__all__ = [
    "DEFAULT_PATTERNS",
    "FALLBACK_MODEL",
    "FALLBACK_PROVIDER_ID",
    # Bulkhead
    "Bulkhead",
    "BulkheadConfig",
    "BulkheadPermit",
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitStats",
    # Executor
    "ExecutionStats",
    "ResilientExecutor",
    "ResponseSource",
    "Stage",
    # Fallback
    "FallbackGenerator",
    "FallbackPattern",
    # Rate limiter
    "RateLimiter",
    "RateLimiterConfig",
    # Registry
    "ProviderGuards",
    "ResilienceRegistry",
    # Retry
    "JitterStrategy",
    "RetryAttempt",
    "RetryConfig",
    "RetryPolicy",
    "RetryResult",
    "with_retry",
]
