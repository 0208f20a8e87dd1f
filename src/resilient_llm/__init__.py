"""面向 LLM provider 调用的弹性执行管线：缓存、限流、隔离、熔断、重试与降级。

resilient-llm: a resilient execution pipeline for text-generation providers.

Wraps provider calls in response caching, rate limiting, bulkhead isolation,
circuit breaking, retry with backoff and degraded-mode fallback, with one
isolated worker pool per provider.
"""
from __future__ import annotations

from resilient_llm._features import HAS_KEYRING
from resilient_llm.cache import CacheConfig, ResponseCache, fingerprint
from resilient_llm.config import PoolConfig, ResilientConfig
from resilient_llm.errors import (
    ErrorKind,
    LlmError,
    PoolClosedError,
    ResilientLlmError,
    ValidationError,
)
from resilient_llm.providers import GeminiClient, GroqClient, OpenAiClient, ProviderClient
from resilient_llm.resilience import (
    CircuitState,
    ExecutionStats,
    FallbackGenerator,
    ResilientExecutor,
    ResponseSource,
)
from resilient_llm.runtime import LlmRuntime
from resilient_llm.types import LlmResponse, RequestContext, SendOptions

__version__ = "0.1.0"

__all__ = [
    # Feature flags
    "HAS_KEYRING",
    # Cache
    "CacheConfig",
    "ResponseCache",
    "fingerprint",
    # Config
    "PoolConfig",
    "ResilientConfig",
    # Errors
    "ErrorKind",
    "LlmError",
    "PoolClosedError",
    "ResilientLlmError",
    "ValidationError",
    # Providers
    "GeminiClient",
    "GroqClient",
    "OpenAiClient",
    "ProviderClient",
    # Resilience
    "CircuitState",
    "ExecutionStats",
    "FallbackGenerator",
    "ResilientExecutor",
    "ResponseSource",
    # Runtime
    "LlmRuntime",
    # Types
    "LlmResponse",
    "RequestContext",
    "SendOptions",
    # Version
    "__version__",
]
