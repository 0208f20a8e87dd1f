"""弹性执行器：缓存、限流、隔离、熔断、重试与降级的统一编排。

Resilient executor combining all resilience patterns.

One call flows through an explicit, ordered pipeline:

1. Response cache (fast path)
2. Rate limiter
3. Bulkhead
4. Circuit breaker
5. Retry with exponential backoff
6. Provider client

Any terminal failure is answered by the fallback generator, so callers always
receive a response. Only programmer errors (``ValidationError``) and caller
cancellation propagate.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from resilient_llm.cache import CacheKey, ResponseCache, fingerprint
from resilient_llm.errors import ErrorKind, LlmError, PoolClosedError, ValidationError
from resilient_llm.providers import ProviderClient
from resilient_llm.resilience.circuit_breaker import CircuitState
from resilient_llm.resilience.fallback import FallbackGenerator
from resilient_llm.resilience.retry import RetryAttempt, RetryConfig, RetryPolicy
from resilient_llm.telemetry import LogContext, get_logger, set_log_context
from resilient_llm.types import LlmResponse, RequestContext, SendOptions

if TYPE_CHECKING:
    from resilient_llm.resilience.registry import ProviderGuards
    from resilient_llm.runtime.pool import ProviderWorkerPool

logger = get_logger("resilient_llm.resilience.executor")


class ResponseSource(str, Enum):
    """Where the response of a call came from."""

    LIVE = "live"
    CACHE = "cache"
    FALLBACK = "fallback"


class Stage(str, Enum):
    """Pipeline stages, in the order a call enters them."""

    CACHE = "cache"
    RATE_LIMITER = "rate_limiter"
    BULKHEAD = "bulkhead"
    CIRCUIT_BREAKER = "circuit_breaker"
    RETRY = "retry"
    PROVIDER = "provider"
    FALLBACK = "fallback"


@dataclass
class ExecutionStats:
    """Record of one pipeline run.

    Attributes:
        source: Where the returned response came from
        stages: Stages entered, in order
        attempts: Provider attempts made
        delays: Retry backoff delays slept, in seconds
        error: The terminal error that triggered the fallback, if any
    """

    source: ResponseSource | None = None
    stages: list[Stage] = field(default_factory=list)
    attempts: int = 0
    delays: list[float] = field(default_factory=list)
    error: Exception | None = None

    def enter(self, stage: Stage) -> None:
        self.stages.append(stage)


class ResilientExecutor(ProviderClient):
    """A provider client wrapped in the full resilience pipeline.

    Executors are normally obtained from ``LlmRuntime.executor(client)``,
    which wires in the shared guards, cache and worker pool for the
    provider.

    Example:
        >>> executor = runtime.executor(OpenAiClient())
        >>> response = await executor.send("Build a house")
        >>> future = executor.send_async("mine 10 iron ore")  # non-blocking
        >>> future.result().provider_id
        'openai'
    """

    def __init__(
        self,
        client: ProviderClient,
        guards: ProviderGuards,
        *,
        cache: ResponseCache | None = None,
        fallback: FallbackGenerator | None = None,
        retry: RetryConfig | None = None,
        pool: ProviderWorkerPool | None = None,
        call_timeout_seconds: float | None = 120.0,
    ) -> None:
        """Initialize resilient executor.

        Args:
            client: Provider client to wrap
            guards: Shared rate limiter, bulkhead and breaker for the provider
            cache: Shared response cache
            fallback: Degraded-mode responder
            retry: Retry configuration
            pool: Worker pool the pipeline runs on; None runs on the caller's loop
            call_timeout_seconds: Deadline for one pipeline run (None = none)
        """
        if guards.provider_id != client.provider_id:
            raise ValidationError(
                "Guards belong to a different provider",
                field="guards",
                expected=client.provider_id,
                actual=guards.provider_id,
            )
        self._client = client
        self._guards = guards
        self._cache = cache or ResponseCache()
        self._fallback = fallback or FallbackGenerator()
        self._retry = RetryPolicy(retry)
        self._pool = pool
        self._call_timeout = call_timeout_seconds

        self._live_responses = 0
        self._cache_responses = 0
        self._fallback_responses = 0

        logger.info(
            "Resilient executor initialized",
            provider=client.provider_id,
            max_attempts=self._retry.config.max_attempts,
            call_timeout_seconds=call_timeout_seconds,
        )

    @property
    def provider_id(self) -> str:
        return self._client.provider_id

    @property
    def default_model(self) -> str:
        return self._client.default_model

    @property
    def client(self) -> ProviderClient:
        return self._client

    @property
    def guards(self) -> ProviderGuards:
        return self._guards

    @property
    def circuit_state(self) -> CircuitState:
        """Get current circuit breaker state."""
        return self._guards.circuit_breaker.state

    def is_healthy(self) -> bool:
        """False only while the circuit breaker is open."""
        return self._guards.circuit_breaker.state != CircuitState.OPEN

    def reset_circuit_breaker(self) -> None:
        """Force the breaker back to CLOSED. For tests and manual recovery."""
        self._guards.circuit_breaker.reset()
        logger.info("Circuit breaker manually reset to CLOSED", provider=self.provider_id)

    def build_context(self, prompt: str, options: SendOptions | None = None) -> RequestContext:
        """Resolve per-call options against the provider defaults."""
        options = options or SendOptions()
        values: dict[str, Any] = {
            "prompt": prompt,
            "provider": self.provider_id,
            "model": options.model or self._client.default_model,
            "system_prompt": options.system_prompt,
        }
        if options.max_tokens is not None:
            values["max_tokens"] = options.max_tokens
        if options.temperature is not None:
            values["temperature"] = options.temperature
        return RequestContext(**values)

    async def send(self, prompt: str, options: SendOptions | None = None) -> LlmResponse:
        """Run the pipeline for one prompt.

        Cache hits are answered on the calling thread; misses run on the
        provider's worker pool.
        """
        _validate_prompt(prompt)
        context = self.build_context(prompt, options)
        if self._pool is None:
            return await self.execute(context)
        if self._pool.closed:
            raise PoolClosedError(self.provider_id)

        stats = ExecutionStats()
        key = fingerprint(context.provider, context.model, context.prompt)
        cached = self._lookup(context, key, stats)
        if cached is not None:
            return cached
        return await asyncio.wrap_future(self._submit(self._pool, context, key, stats))

    def send_async(
        self, prompt: str, options: SendOptions | None = None
    ) -> concurrent.futures.Future[LlmResponse]:
        """Submit one prompt and return immediately.

        A cache hit comes back as an already completed future.

        Raises:
            ValidationError: For an empty prompt, before anything is scheduled
            PoolClosedError: If the runtime has been shut down
        """
        _validate_prompt(prompt)
        if self._pool is None:
            raise ValidationError(
                "send_async requires an executor bound to a worker pool", field="pool"
            )
        if self._pool.closed:
            raise PoolClosedError(self.provider_id)

        context = self.build_context(prompt, options)
        stats = ExecutionStats()
        key = fingerprint(context.provider, context.model, context.prompt)
        cached = self._lookup(context, key, stats)
        if cached is not None:
            future: concurrent.futures.Future[LlmResponse] = concurrent.futures.Future()
            future.set_result(cached)
            return future
        return self._submit(self._pool, context, key, stats)

    def _submit(
        self,
        pool: ProviderWorkerPool,
        context: RequestContext,
        key: CacheKey,
        stats: ExecutionStats,
    ) -> concurrent.futures.Future[LlmResponse]:
        return pool.submit(self._execute_miss(context, key, stats, time.monotonic()))

    async def execute(self, context: RequestContext) -> LlmResponse:
        """Run the full pipeline for a resolved request.

        Must run on the loop that owns the guards: the worker pool loop when
        the executor is bound to a pool (``send`` and ``send_async`` take
        care of this).

        Returns:
            A live, cached or fallback response; never raises for provider
            failures

        Raises:
            ValidationError: For an empty or blank prompt
        """
        response, _ = await self.execute_with_stats(context)
        return response

    async def execute_with_stats(
        self, context: RequestContext
    ) -> tuple[LlmResponse, ExecutionStats]:
        """Run the pipeline and report what happened."""
        _validate_prompt(context.prompt)
        stats = ExecutionStats()
        key = fingerprint(context.provider, context.model, context.prompt)
        cached = self._lookup(context, key, stats)
        if cached is not None:
            return cached, stats
        return await self._execute_miss(context, key, stats, time.monotonic()), stats

    def _lookup(
        self, context: RequestContext, key: CacheKey, stats: ExecutionStats
    ) -> LlmResponse | None:
        stats.enter(Stage.CACHE)
        cached = self._cache.get(key)
        if cached is None:
            logger.debug("Cache miss, executing with resilience patterns", provider=context.provider)
            return None
        logger.debug("Cache hit", provider=context.provider, key=key.short)
        stats.source = ResponseSource.CACHE
        self._cache_responses += 1
        return cached

    async def _execute_miss(
        self,
        context: RequestContext,
        key: CacheKey,
        stats: ExecutionStats,
        submitted_at: float,
    ) -> LlmResponse:
        """Guarded call plus fallback, bounded by the deadline from ``submitted_at``."""
        set_log_context(
            LogContext(
                request_id=uuid.uuid4().hex[:12],
                provider=context.provider,
                model=context.model,
            )
        )

        response: LlmResponse | None = None
        if self._call_timeout is None:
            response = await self._run_pipeline(context, stats)
        else:
            remaining = self._call_timeout - (time.monotonic() - submitted_at)
            if remaining <= 0:
                stats.error = self._deadline_error(context)
            else:
                try:
                    response = await asyncio.wait_for(
                        self._run_pipeline(context, stats), timeout=remaining
                    )
                except asyncio.TimeoutError:
                    stats.error = self._deadline_error(context)

        if response is not None:
            self._cache.put(key, response)
            logger.debug(
                "Request successful, cached response",
                provider=context.provider,
                latency_ms=response.latency_ms,
                tokens=response.tokens_used,
            )
            stats.source = ResponseSource.LIVE
            self._live_responses += 1
            return response

        logger.error(
            "Request failed, using fallback",
            provider=context.provider,
            error=str(stats.error),
            attempts=stats.attempts,
        )
        stats.enter(Stage.FALLBACK)
        stats.source = ResponseSource.FALLBACK
        self._fallback_responses += 1
        return self._fallback.generate(context.prompt, stats.error)

    def _deadline_error(self, context: RequestContext) -> LlmError:
        return LlmError(
            f"Call exceeded its {self._call_timeout:.3g}s deadline",
            kind=ErrorKind.TIMEOUT,
            provider_id=context.provider,
        )

    async def _run_pipeline(
        self, context: RequestContext, stats: ExecutionStats
    ) -> LlmResponse | None:
        """Guarded call; returns None and records the error on terminal failure."""
        try:
            return await self._guarded_call(context, stats)
        except ValidationError:
            raise
        except Exception as e:
            stats.error = e
            return None

    async def _guarded_call(self, context: RequestContext, stats: ExecutionStats) -> LlmResponse:
        guards = self._guards

        stats.enter(Stage.RATE_LIMITER)
        await guards.rate_limiter.acquire()

        stats.enter(Stage.BULKHEAD)
        async with guards.bulkhead.permit():
            stats.enter(Stage.CIRCUIT_BREAKER)
            breaker = guards.circuit_breaker
            breaker.acquire_permission()

            stats.enter(Stage.RETRY)
            try:
                result = await self._retry.execute(
                    lambda: self._call_provider(context, stats),
                    on_retry=self._log_retry,
                )
            except BaseException:
                breaker.release_permission()
                raise

            stats.attempts = result.attempts
            stats.delays = list(result.delays)
            if result.success:
                breaker.on_success()
                return result.value

            breaker.on_error(result.error)
            raise result.error  # type: ignore[misc]

    async def _call_provider(self, context: RequestContext, stats: ExecutionStats) -> LlmResponse:
        if Stage.PROVIDER not in stats.stages:
            stats.enter(Stage.PROVIDER)
        return await self._client.send(context.prompt, context.to_options())

    def _log_retry(self, attempt: RetryAttempt) -> None:
        logger.warning(
            "Retry attempt",
            provider=self.provider_id,
            attempt=attempt.attempt,
            max_attempts=self._retry.config.max_attempts,
            delay_seconds=attempt.next_delay,
            reason=str(attempt.error),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def get_stats(self) -> dict[str, Any]:
        """Get executor and guard statistics."""
        return {
            "provider_id": self.provider_id,
            "healthy": self.is_healthy(),
            "circuit_state": self.circuit_state.value,
            "live_responses": self._live_responses,
            "cache_responses": self._cache_responses,
            "fallback_responses": self._fallback_responses,
            **self._guards.get_stats(),
        }

    def __repr__(self) -> str:
        return (
            f"ResilientExecutor(provider_id={self.provider_id!r}, "
            f"circuit={self.circuit_state.value})"
        )


def _validate_prompt(prompt: str | None) -> None:
    if prompt is None or not prompt.strip():
        raise ValidationError("Prompt cannot be empty", field="prompt")
