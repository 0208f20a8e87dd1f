"""运行时组合根：持有进程级注册表，并为每个 provider 提供唯一的执行器。

Composition root for resilient-llm.

``LlmRuntime`` is constructed explicitly (no module-level singleton) and owns
everything that must be shared process-wide: the worker pools, the
per-provider guards, the response cache and the fallback generator.
"""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, Any

from resilient_llm.cache import ResponseCache
from resilient_llm.config import ResilientConfig
from resilient_llm.errors import PoolClosedError
from resilient_llm.resilience import FallbackGenerator, ResilienceRegistry, ResilientExecutor
from resilient_llm.runtime.pool import WorkerPoolRegistry
from resilient_llm.telemetry import get_logger

if TYPE_CHECKING:
    from resilient_llm.providers import ProviderClient

logger = get_logger("resilient_llm.runtime")


class LlmRuntime:
    """Owns the shared registries and hands out executors.

    Example:
        >>> with LlmRuntime(ResilientConfig.load("resilience.yaml")) as runtime:
        ...     groq = runtime.executor(GroqClient())
        ...     future = groq.send_async("follow me")
        ...     print(future.result().content)
    """

    def __init__(
        self,
        config: ResilientConfig | None = None,
        *,
        cache: ResponseCache | None = None,
        fallback: FallbackGenerator | None = None,
    ) -> None:
        """Build the registries.

        Args:
            config: Combined configuration (defaults if omitted)
            cache: Response cache to share (built from config if omitted)
            fallback: Degraded-mode responder (pattern matcher if omitted)
        """
        self._config = config or ResilientConfig.default()
        self._cache = cache or ResponseCache(self._config.cache)
        self._fallback = fallback or FallbackGenerator()
        self._guards = ResilienceRegistry(
            rate_limiter=self._config.rate_limit,
            bulkhead=self._config.bulkhead,
            circuit_breaker=self._config.circuit_breaker,
        )
        self._pools = WorkerPoolRegistry(self._config.pool)
        self._executors: dict[str, ResilientExecutor] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def config(self) -> ResilientConfig:
        return self._config

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def fallback(self) -> FallbackGenerator:
        return self._fallback

    @property
    def guards(self) -> ResilienceRegistry:
        return self._guards

    @property
    def pools(self) -> WorkerPoolRegistry:
        return self._pools

    @property
    def closed(self) -> bool:
        return self._closed

    def executor(self, client: ProviderClient) -> ResilientExecutor:
        """Get the executor for the client's provider, creating it on first use.

        There is one executor per provider id. A later call with a different
        client object for the same provider returns the existing executor.

        Raises:
            PoolClosedError: If the runtime has been shut down
        """
        provider_id = client.provider_id
        with self._lock:
            if self._closed:
                raise PoolClosedError(provider_id)

            existing = self._executors.get(provider_id)
            if existing is not None:
                if existing.client is not client:
                    logger.debug("Reusing existing executor for provider", provider=provider_id)
                return existing

            pool = self._pools.pool_for(provider_id)
            executor = ResilientExecutor(
                client,
                self._guards.guards_for(provider_id),
                cache=self._cache,
                fallback=self._fallback,
                retry=self._config.retry,
                pool=pool,
                call_timeout_seconds=self._config.call_timeout_seconds,
            )
            pool.add_close_hook(executor.aclose)
            self._executors[provider_id] = executor
            return executor

    def executors(self) -> list[ResilientExecutor]:
        with self._lock:
            return list(self._executors.values())

    def shutdown(self, grace_seconds: float | None = None) -> None:
        """Drain and stop every worker pool. Idempotent.

        Args:
            grace_seconds: Time allowed for in-flight work (config default if None)
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._pools.shutdown(grace_seconds)
        self._cache.log_stats()
        logger.info("Runtime shut down", providers=len(self._executors))

    def get_stats(self) -> dict[str, Any]:
        """Aggregate cache, guard and pool statistics."""
        return {
            "closed": self._closed,
            "cache": {"size": self._cache.size, **self._cache.stats.to_dict()},
            "providers": self._guards.get_stats(),
            "pools": self._pools.get_stats(),
        }

    def __enter__(self) -> LlmRuntime:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown()

    async def __aenter__(self) -> LlmRuntime:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await asyncio.to_thread(self.shutdown)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "running"
        return f"LlmRuntime(providers={sorted(self._executors)}, {state})"
