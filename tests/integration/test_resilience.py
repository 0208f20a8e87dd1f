"""
Integration tests for the resilient runtime.

Runs whole calls through LlmRuntime: worker pools, shared guards, the
response cache and the fallback generator, with in-process providers and
mocked HTTP endpoints.
"""

import asyncio
import json
import threading
import time
from dataclasses import replace

import pytest

from resilient_llm import LlmRuntime
from resilient_llm.errors import ErrorKind, LlmError, PoolClosedError, ValidationError
from resilient_llm.providers import OpenAiClient
from resilient_llm.resilience import BulkheadConfig, CircuitState, RetryConfig


OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def _openai_body(content: str) -> dict:
    return {
        "model": "gpt-3.5-turbo",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"total_tokens": 25},
    }


@pytest.fixture
def runtime(fast_config):
    runtime = LlmRuntime(fast_config)
    yield runtime
    runtime.shutdown(grace_seconds=1.0)


class TestWorkerPools:
    """Tests for submission through per-provider pools."""

    def test_send_async_returns_future(self, runtime, fake_provider) -> None:
        executor = runtime.executor(fake_provider)

        future = executor.send_async("hello")
        response = future.result(timeout=5)

        assert response.content == "echo: hello"
        assert fake_provider.threads == ["llm-fake"]

    @pytest.mark.asyncio
    async def test_send_from_event_loop(self, runtime, fake_provider) -> None:
        executor = runtime.executor(fake_provider)
        response = await executor.send("hello")
        cached = await executor.send("hello")

        assert response.from_cache is False
        assert cached.from_cache is True
        assert fake_provider.calls == 1

    def test_one_executor_per_provider(self, runtime, fake_provider_cls) -> None:
        first = runtime.executor(fake_provider_cls())
        second = runtime.executor(fake_provider_cls())
        other = runtime.executor(fake_provider_cls(provider_id="other"))

        assert first is second
        assert other is not first
        assert first.guards is runtime.guards.guards_for("fake")
        assert sorted(runtime.pools.providers()) == ["fake", "other"]

    def test_providers_are_isolated(self, fast_config, fake_provider_cls) -> None:
        """A saturated provider never delays another provider."""
        config = replace(fast_config, bulkhead=BulkheadConfig(max_concurrent=1, max_wait_seconds=1.0))
        slow = fake_provider_cls(provider_id="slow", delay=0.5)
        fast = fake_provider_cls(provider_id="fast")

        with LlmRuntime(config) as runtime:
            slow_executor = runtime.executor(slow)
            fast_executor = runtime.executor(fast)
            for i in range(3):
                slow_executor.send_async(f"slow {i}")

            started = time.monotonic()
            fast_executor.send_async("quick").result(timeout=2)
            assert time.monotonic() - started < 0.3

        assert fast.threads == ["llm-fast"]
        assert set(slow.threads) == {"llm-slow"}

    def test_bulkhead_caps_concurrency(self, fast_config, fake_provider_cls) -> None:
        config = replace(fast_config, bulkhead=BulkheadConfig(max_concurrent=2, max_wait_seconds=1.0))
        provider = fake_provider_cls(delay=0.1)

        with LlmRuntime(config) as runtime:
            executor = runtime.executor(provider)
            futures = [executor.send_async(f"prompt {i}") for i in range(5)]
            responses = [f.result(timeout=5) for f in futures]

        assert all(r.provider_id == "fake" for r in responses)
        assert provider.max_inflight == 2

    def test_concurrent_callers_from_threads(self, runtime, fake_provider_cls) -> None:
        provider = fake_provider_cls(delay=0.01)
        executor = runtime.executor(provider)
        results: list[str] = []
        lock = threading.Lock()

        def caller(n: int) -> None:
            response = executor.send_async(f"thread {n}").result(timeout=5)
            with lock:
                results.append(response.content)

        threads = [threading.Thread(target=caller, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == sorted(f"echo: thread {n}" for n in range(8))


class TestSaturatedProvider:
    """Tests for calls made while every bulkhead slot is busy."""

    def test_cache_hit_skips_busy_pool(self, fast_config, fake_provider_cls) -> None:
        config = replace(fast_config, bulkhead=BulkheadConfig(max_wait_seconds=1.0))
        provider = fake_provider_cls(delay=0.5)

        with LlmRuntime(config) as runtime:
            executor = runtime.executor(provider)
            executor.send_async("hello").result(timeout=2)
            busy = [executor.send_async(f"slow {i}") for i in range(5)]

            started = time.monotonic()
            cached = executor.send_async("hello")
            assert cached.done()
            response = cached.result(timeout=0)
            assert time.monotonic() - started < 0.1
            assert response.from_cache is True

            for future in busy:
                future.result(timeout=2)
        assert provider.calls == 6

    def test_bulkhead_full_with_default_sizing(self, fast_config, fake_provider_cls) -> None:
        config = replace(fast_config, bulkhead=BulkheadConfig(max_wait_seconds=0.2))
        provider = fake_provider_cls(delay=1.0)

        with LlmRuntime(config) as runtime:
            executor = runtime.executor(provider)
            busy = [executor.send_async(f"slow {i}") for i in range(config.bulkhead.max_concurrent)]
            time.sleep(0.05)

            started = time.monotonic()
            response = executor.send_async("sixth").result(timeout=2)
            elapsed = time.monotonic() - started

            assert response.provider_id == "fallback"
            assert 0.15 < elapsed < 0.6
            bulkhead = runtime.get_stats()["providers"]["fake"]["bulkhead"]
            assert bulkhead["total_rejected"] == 1
            assert bulkhead["peak_inflight"] == 5

            for future in busy:
                assert future.result(timeout=2).provider_id == "fake"
        assert provider.calls == 5

    def test_deadline_counts_from_submission(self, fast_config, fake_provider) -> None:
        """Time spent waiting for the pool loop is charged to the call."""
        config = replace(fast_config, call_timeout_seconds=0.2)

        async def hog_loop() -> None:
            time.sleep(0.4)

        with LlmRuntime(config) as runtime:
            executor = runtime.executor(fake_provider)
            runtime.pools.pool_for("fake").submit(hog_loop())
            response = executor.send_async("mine some iron").result(timeout=2)

        assert response.provider_id == "fallback"
        assert json.loads(response.content)["tasks"][0]["action"] == "mine"
        assert fake_provider.calls == 0


class TestDegradedMode:
    """Tests for breaker and fallback behaviour across calls."""

    @pytest.mark.asyncio
    async def test_breaker_opens_then_recovers(self, fast_config, fake_provider_cls) -> None:
        config = replace(fast_config, retry=RetryConfig.no_retry())
        failure = LlmError("HTTP 503", kind=ErrorKind.SERVER_ERROR, provider_id="fake")
        provider = fake_provider_cls(outcomes=[failure] * 4)

        async with LlmRuntime(config) as runtime:
            executor = runtime.executor(provider)

            for i in range(4):
                response = await executor.send(f"mine block {i}")
                assert response.provider_id == "fallback"
            assert executor.circuit_state == CircuitState.OPEN
            assert not executor.is_healthy()

            short_circuited = await executor.send("attack the zombie")
            assert json.loads(short_circuited.content)["tasks"][0]["action"] == "attack"
            assert provider.calls == 4

            await asyncio.sleep(config.circuit_breaker.wait_duration_seconds + 0.05)
            for i in range(config.circuit_breaker.half_open_probes):
                assert (await executor.send(f"probe {i}")).provider_id == "fake"
            assert executor.circuit_state == CircuitState.CLOSED

        assert runtime.closed

    def test_guards_shared_across_executors(self, fast_config, fake_provider_cls) -> None:
        config = replace(fast_config, retry=RetryConfig.no_retry())
        failure = LlmError("HTTP 500", kind=ErrorKind.SERVER_ERROR, provider_id="fake")

        with LlmRuntime(config) as runtime:
            executor = runtime.executor(fake_provider_cls(outcomes=[failure] * 4))
            for i in range(4):
                executor.send_async(f"fail {i}").result(timeout=5)

            assert runtime.guards.guards_for("fake").circuit_breaker.is_open
            assert runtime.get_stats()["providers"]["fake"]["circuit_breaker"]["state"] == "open"


class TestHttpProviderEndToEnd:
    """OpenAI client behind the runtime, with the HTTP endpoint mocked."""

    def test_live_then_cached(self, runtime, httpx_mock) -> None:
        httpx_mock.add_response(url=OPENAI_URL, method="POST", json=_openai_body("Building now"))
        executor = runtime.executor(OpenAiClient("sk-test"))

        first = executor.send_async("build a house").result(timeout=5)
        second = executor.send_async("build a house").result(timeout=5)

        assert first.content == "Building now"
        assert first.provider_id == "openai"
        assert first.tokens_used == 25
        assert second.from_cache is True
        assert len(httpx_mock.get_requests()) == 1

    def test_retries_server_errors(self, runtime, httpx_mock) -> None:
        httpx_mock.add_response(url=OPENAI_URL, method="POST", status_code=503)
        httpx_mock.add_response(url=OPENAI_URL, method="POST", status_code=502)
        httpx_mock.add_response(url=OPENAI_URL, method="POST", json=_openai_body("Recovered"))
        executor = runtime.executor(OpenAiClient("sk-test"))

        response = executor.send_async("follow me").result(timeout=5)
        assert response.content == "Recovered"
        assert len(httpx_mock.get_requests()) == 3

    def test_auth_error_falls_back_without_retry(self, runtime, httpx_mock) -> None:
        httpx_mock.add_response(
            url=OPENAI_URL,
            method="POST",
            status_code=401,
            json={"error": {"message": "Invalid API key"}},
        )
        executor = runtime.executor(OpenAiClient("sk-test"))

        response = executor.send_async("mine 10 iron ore").result(timeout=5)
        assert response.provider_id == "fallback"
        assert json.loads(response.content)["tasks"][0]["action"] == "mine"
        assert len(httpx_mock.get_requests()) == 1


class TestShutdown:
    """Tests for runtime shutdown."""

    def test_idempotent_and_rejects_new_work(self, fast_config, fake_provider) -> None:
        runtime = LlmRuntime(fast_config)
        executor = runtime.executor(fake_provider)
        executor.send_async("hello").result(timeout=5)

        runtime.shutdown()
        runtime.shutdown()

        assert runtime.closed
        with pytest.raises(PoolClosedError):
            executor.send_async("again")
        with pytest.raises(PoolClosedError):
            executor.send_async("hello")
        with pytest.raises(PoolClosedError):
            runtime.executor(fake_provider)

    def test_closes_provider_clients(self, fast_config, fake_provider) -> None:
        with LlmRuntime(fast_config) as runtime:
            runtime.executor(fake_provider)
        assert fake_provider.closed

    def test_drains_inflight_calls(self, fast_config, fake_provider_cls) -> None:
        provider = fake_provider_cls(delay=0.2)
        runtime = LlmRuntime(fast_config)
        future = runtime.executor(provider).send_async("slow but fine")

        runtime.shutdown(grace_seconds=2.0)
        assert future.result(timeout=0).content == "echo: slow but fine"

    def test_empty_prompt_rejected_before_submission(self, runtime, fake_provider) -> None:
        executor = runtime.executor(fake_provider)
        with pytest.raises(ValidationError):
            executor.send_async("  ")
        assert runtime.pools.get_stats()["fake"]["submitted"] == 0


class TestStats:
    def test_runtime_stats(self, runtime, fake_provider) -> None:
        executor = runtime.executor(fake_provider)
        executor.send_async("hello").result(timeout=5)
        executor.send_async("hello").result(timeout=5)

        stats = runtime.get_stats()
        assert stats["closed"] is False
        assert stats["cache"]["hits"] == 1
        assert stats["cache"]["size"] == 1
        assert stats["providers"]["fake"]["bulkhead"]["current_inflight"] == 0
        assert stats["pools"]["fake"]["completed"] == 2
        assert "fake" in repr(runtime)
