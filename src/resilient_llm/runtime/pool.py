"""
Per-provider worker pools.

Each provider gets one daemon thread named ``llm-<provider>`` that runs its
own asyncio event loop. Work for a provider is submitted to that loop, so a
slow provider can only ever delay its own calls. How many calls run at once
within a provider is the bulkhead's business, not the pool's.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from resilient_llm.config import PoolConfig
from resilient_llm.errors import PoolClosedError
from resilient_llm.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine

T = TypeVar("T")

logger = get_logger("resilient_llm.runtime.pool")

# Extra time allowed for cancelled tasks to unwind after the grace period.
_CANCEL_GRACE_SECONDS = 5.0


@dataclass
class PoolStats:
    """Counters for one worker pool."""

    provider_id: str
    submitted: int = 0
    active: int = 0
    completed: int = 0
    closed: bool = False

    @property
    def queued(self) -> int:
        return max(0, self.submitted - self.completed - self.active)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "submitted": self.submitted,
            "active": self.active,
            "queued": self.queued,
            "completed": self.completed,
            "closed": self.closed,
        }


class ProviderWorkerPool:
    """A dedicated event-loop thread for one provider.

    Example:
        >>> pool = ProviderWorkerPool("openai")
        >>> future = pool.submit(client.send("mine iron"))
        >>> response = future.result(timeout=60)
        >>> pool.shutdown(grace_seconds=30)
    """

    def __init__(self, provider_id: str) -> None:
        """Start the pool thread.

        Args:
            provider_id: Provider identifier (used in the thread name)
        """
        self._provider_id = provider_id
        self._stats = PoolStats(provider_id=provider_id)
        self._lock = threading.Lock()
        self._closed = False
        self._close_hooks: list[Callable[[], Awaitable[None]]] = []

        self._loop = asyncio.new_event_loop()
        self._ready = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"llm-{provider_id}", daemon=True
        )
        self._thread.start()
        self._ready.wait()

        logger.info("Worker pool started", provider=provider_id)

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """The event loop every coroutine of this pool runs on."""
        return self._loop

    @property
    def thread(self) -> threading.Thread:
        return self._thread

    @property
    def closed(self) -> bool:
        return self._closed

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._ready.set)
        try:
            self._loop.run_forever()
        finally:
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule a coroutine on the pool. Returns immediately.

        Raises:
            PoolClosedError: If the pool has been shut down
        """
        with self._lock:
            if self._closed:
                coro.close()
                raise PoolClosedError(self._provider_id)
            self._stats.submitted += 1
            return asyncio.run_coroutine_threadsafe(self._track(coro), self._loop)

    async def _track(self, coro: Coroutine[Any, Any, T]) -> T:
        self._stats.active += 1
        try:
            return await coro
        finally:
            self._stats.active -= 1
            self._stats.completed += 1

    def shutdown(self, grace_seconds: float = 30.0) -> None:
        """Stop accepting work, drain, then stop the thread.

        In-flight work gets ``grace_seconds`` to finish; whatever is still
        running afterwards is cancelled. Calling this again is a no-op.
        """
        if threading.current_thread() is self._thread:
            raise RuntimeError("A worker pool cannot shut itself down from its own thread")

        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._stats.closed = True

        logger.info(
            "Shutting down worker pool", provider=self._provider_id, grace_seconds=grace_seconds
        )
        drain = asyncio.run_coroutine_threadsafe(self._drain(grace_seconds), self._loop)
        try:
            cancelled = drain.result(timeout=grace_seconds + _CANCEL_GRACE_SECONDS)
        except concurrent.futures.TimeoutError:
            logger.warning("Worker pool did not drain in time", provider=self._provider_id)
            cancelled = -1

        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=_CANCEL_GRACE_SECONDS)

        if cancelled > 0:
            logger.warning(
                "Forced shutdown of worker pool", provider=self._provider_id, cancelled=cancelled
            )
        logger.info("Worker pool shut down", provider=self._provider_id)

    async def _drain(self, grace_seconds: float) -> int:
        current = asyncio.current_task()
        pending = {task for task in asyncio.all_tasks() if task is not current}
        if pending:
            _, pending = await asyncio.wait(pending, timeout=grace_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for hook in self._close_hooks:
            try:
                await hook()
            except Exception:
                logger.exception("Pool close hook failed", provider=self._provider_id)
        return len(pending)

    def add_close_hook(self, hook: Callable[[], Awaitable[None]]) -> None:
        """Run ``hook`` on the pool loop after draining, before the loop stops.

        Used to close loop-bound resources such as HTTP clients.
        """
        self._close_hooks.append(hook)

    def get_stats(self) -> PoolStats:
        return PoolStats(
            provider_id=self._stats.provider_id,
            submitted=self._stats.submitted,
            active=self._stats.active,
            completed=self._stats.completed,
            closed=self._stats.closed,
        )

    def __repr__(self) -> str:
        state = "closed" if self._closed else "running"
        return f"ProviderWorkerPool({self._provider_id}, {state})"


class WorkerPoolRegistry:
    """Process-wide set of worker pools, one per provider id.

    Pools are created on first request and live until ``shutdown``.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pools: dict[str, ProviderWorkerPool] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def config(self) -> PoolConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._closed

    def pool_for(self, provider_id: str) -> ProviderWorkerPool:
        """Get or create the pool for a provider.

        Raises:
            PoolClosedError: If the registry has been shut down
        """
        with self._lock:
            if self._closed:
                raise PoolClosedError(provider_id)
            pool = self._pools.get(provider_id)
            if pool is None:
                pool = ProviderWorkerPool(provider_id)
                self._pools[provider_id] = pool
            return pool

    def providers(self) -> list[str]:
        with self._lock:
            return list(self._pools)

    def shutdown(self, grace_seconds: float | None = None) -> None:
        """Shut down every pool. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pools = list(self._pools.values())

        grace = self._config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        for pool in pools:
            pool.shutdown(grace)
        logger.info("All worker pools shut down", pools=len(pools))

    def get_stats(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            pools = list(self._pools.values())
        return {pool.provider_id: pool.get_stats().to_dict() for pool in pools}

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._pools

    def __len__(self) -> int:
        return len(self._pools)
