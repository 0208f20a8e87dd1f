"""Root pytest fixtures for resilient-llm tests."""

from __future__ import annotations

import asyncio
import os
import threading

import pytest

from resilient_llm.config import PoolConfig, ResilientConfig
from resilient_llm.providers import ProviderClient
from resilient_llm.resilience import (
    BulkheadConfig,
    CircuitBreakerConfig,
    RateLimiterConfig,
    RetryConfig,
)
from resilient_llm.types import LlmResponse, SendOptions


class FakeProvider(ProviderClient):
    """In-process provider with scripted outcomes.

    Each call pops the next outcome: an exception is raised, a string becomes
    the response content. With no outcomes left, the prompt is echoed.
    """

    def __init__(
        self,
        provider_id: str = "fake",
        model: str = "fake-model",
        outcomes: list[Exception | str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self._provider_id = provider_id
        self._model = model
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls = 0
        self.prompts: list[str] = []
        self.options: list[SendOptions | None] = []
        self.inflight = 0
        self.max_inflight = 0
        self.closed = False
        self.threads: list[str] = []

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def default_model(self) -> str:
        return self._model

    async def send(self, prompt: str, options: SendOptions | None = None) -> LlmResponse:
        self.calls += 1
        self.prompts.append(prompt)
        self.options.append(options)
        self.threads.append(threading.current_thread().name)
        self.inflight += 1
        self.max_inflight = max(self.max_inflight, self.inflight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.pop(0) if self.outcomes else f"echo: {prompt}"
            if isinstance(outcome, Exception):
                raise outcome
            model = options.model if options and options.model else self._model
            return LlmResponse(
                content=outcome,
                model=model,
                provider_id=self._provider_id,
                tokens_used=12,
                latency_ms=3,
            )
        finally:
            self.inflight -= 1

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_provider_cls() -> type[FakeProvider]:
    return FakeProvider


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_config() -> ResilientConfig:
    """Defaults scaled down so timing-based tests finish in milliseconds."""
    return ResilientConfig(
        rate_limit=RateLimiterConfig(limit_for_period=100, period_seconds=1.0, timeout_seconds=0.5),
        bulkhead=BulkheadConfig(max_concurrent=5, max_wait_seconds=0.5),
        circuit_breaker=CircuitBreakerConfig(
            sliding_window_size=4,
            failure_rate_threshold=50.0,
            wait_duration_seconds=0.2,
            half_open_probes=2,
        ),
        retry=RetryConfig(max_attempts=3, base_delay_ms=5),
        pool=PoolConfig(shutdown_grace_seconds=1.0),
        call_timeout_seconds=5.0,
    )


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep RESILIENT_LLM_* variables from the host out of the tests."""
    for name in list(os.environ):
        if name.startswith("RESILIENT_LLM_"):
            monkeypatch.delenv(name, raising=False)
