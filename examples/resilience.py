#!/usr/bin/env python3
"""
Resilience pipeline example.

This example demonstrates how calls flow through the resilient runtime:
- Response caching
- Per-provider rate limiting, bulkheads and circuit breakers
- Retry with exponential backoff
- Pattern-matched fallback when a provider is unavailable

Usage:
    export GROQ_API_KEY="your-api-key"
    python examples/resilience.py [examples/resilience.yaml]

Set RESILIENT_LLM_LOG_FORMAT=json for JSON log lines on stderr.

Without a key the example still runs: the calls fail with AUTH_ERROR and
every answer comes from the fallback generator.
"""

import asyncio
import json
import os
import sys

from resilient_llm import LlmRuntime, ResilientConfig
from resilient_llm.errors import ErrorKind, LlmError
from resilient_llm.providers import GroqClient, ProviderClient
from resilient_llm.telemetry import LlmLogger
from resilient_llm.types import LlmResponse, SendOptions


class OfflineClient(ProviderClient):
    """Stand-in provider used when no API key is configured."""

    @property
    def provider_id(self) -> str:
        return "groq"

    @property
    def default_model(self) -> str:
        return "offline"

    async def send(self, prompt: str, options: SendOptions | None = None) -> LlmResponse:
        raise LlmError("No API key configured", kind=ErrorKind.AUTH_ERROR, provider_id="groq")


def print_response(label: str, response: LlmResponse) -> None:
    plan = response.content
    try:
        plan = json.dumps(json.loads(response.content)["tasks"])
    except (ValueError, KeyError, TypeError):
        pass
    print(
        f"  {label:<22} provider={response.provider_id:<9} "
        f"cache={response.from_cache!s:<5} tokens={response.tokens_used:<4} {plan[:60]}"
    )


async def cached_calls(runtime: LlmRuntime, client: ProviderClient) -> None:
    """The second identical prompt is served from the cache."""
    print("Cached calls:")
    executor = runtime.executor(client)

    for label in ("first call", "second call"):
        response = await executor.send("Build a small house near the river")
        print_response(label, response)
    print()


def fire_and_forget(runtime: LlmRuntime, client: ProviderClient) -> None:
    """send_async returns immediately; results are collected later."""
    print("Non-blocking submission:")
    executor = runtime.executor(client)

    prompts = ["mine 10 iron ore", "follow me", "attack the zombie", "place a torch here"]
    futures = {prompt: executor.send_async(prompt) for prompt in prompts}
    for prompt, future in futures.items():
        print_response(prompt, future.result(timeout=120))
    print()


async def breaker_demo(runtime: LlmRuntime, client: ProviderClient) -> None:
    """Watch the breaker state while calls succeed or fail."""
    print("Circuit breaker:")
    executor = runtime.executor(client)

    for i in range(12):
        response = await executor.send(f"go to waypoint {i}")
        print(
            f"  call {i:>2}: provider={response.provider_id:<9} "
            f"circuit={executor.circuit_state.value} healthy={executor.is_healthy()}"
        )
    print()


async def main() -> None:
    os.environ.setdefault("RESILIENT_LLM_LOG_LEVEL", "WARNING")
    LlmLogger.configure_from_env()

    config_path = sys.argv[1] if len(sys.argv) > 1 else None
    config = ResilientConfig.load(config_path)

    client: ProviderClient
    if os.getenv("GROQ_API_KEY"):
        client = GroqClient()
    else:
        print("GROQ_API_KEY not set, running offline\n")
        client = OfflineClient()

    async with LlmRuntime(config) as runtime:
        await cached_calls(runtime, client)
        await asyncio.to_thread(fire_and_forget, runtime, client)
        await breaker_demo(runtime, client)

        print("Runtime stats:")
        stats = runtime.get_stats()
        print(f"  cache: {stats['cache']}")
        for provider, guards in stats["providers"].items():
            print(f"  {provider}: {guards['circuit_breaker']}")


if __name__ == "__main__":
    asyncio.run(main())
