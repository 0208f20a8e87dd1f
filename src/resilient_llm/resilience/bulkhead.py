"""
Bulkhead isolation using semaphores.

Limits concurrent in-flight calls to one provider so that a slow provider
cannot absorb every worker.
"""

from __future__ import annotations

import asyncio
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from resilient_llm.errors import LlmError, ValidationError
from resilient_llm.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger("resilient_llm.resilience.bulkhead")


@dataclass
class BulkheadConfig:
    """Configuration for bulkhead isolation.

    Attributes:
        max_concurrent: Maximum concurrent calls
        max_wait_seconds: Default time to wait for a slot
    """

    max_concurrent: int = 5
    max_wait_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.max_concurrent <= 0:
            raise ValidationError(
                "max_concurrent must be positive",
                field="bulkhead.max_concurrent",
                actual=self.max_concurrent,
            )
        if self.max_wait_seconds < 0:
            raise ValidationError(
                "max_wait_seconds must be >= 0",
                field="bulkhead.max_wait_seconds",
                actual=self.max_wait_seconds,
            )

    @classmethod
    def from_env(cls, base: BulkheadConfig | None = None) -> BulkheadConfig:
        """Apply RESILIENT_LLM_BULKHEAD_* environment overrides."""
        base = base or cls()
        return cls(
            max_concurrent=int(
                os.getenv("RESILIENT_LLM_BULKHEAD_MAX_CONCURRENT", base.max_concurrent)
            ),
            max_wait_seconds=float(
                os.getenv("RESILIENT_LLM_BULKHEAD_MAX_WAIT_SECS", base.max_wait_seconds)
            ),
        )


@dataclass
class BulkheadPermit:
    """A held concurrency slot. Release it through the owning bulkhead."""

    provider_id: str
    acquired_at: float = field(default_factory=time.monotonic)
    released: bool = False


class Bulkhead:
    """Per-provider concurrency limit.

    Example:
        >>> bulkhead = Bulkhead(BulkheadConfig(max_concurrent=5), name="groq")
        >>> async with bulkhead.permit():
        ...     await make_request()

        >>> # Or explicitly
        >>> permit = await bulkhead.acquire(timeout=2.0)
        >>> try:
        ...     await make_request()
        ... finally:
        ...     bulkhead.release(permit)
    """

    def __init__(
        self,
        config: BulkheadConfig | None = None,
        name: str = "default",
    ) -> None:
        """Initialize bulkhead.

        Args:
            config: Bulkhead configuration
            name: Provider identifier this bulkhead guards
        """
        self._config = config or BulkheadConfig()
        self._name = name
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent)

        # Statistics
        self._current_inflight = 0
        self._peak_inflight = 0
        self._total_acquired = 0
        self._total_rejected = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def max_concurrent(self) -> int:
        return self._config.max_concurrent

    @property
    def current_inflight(self) -> int:
        """Get current number of in-flight calls."""
        return self._current_inflight

    @property
    def peak_inflight(self) -> int:
        return self._peak_inflight

    @property
    def available_permits(self) -> int:
        """Get number of free slots."""
        return self._config.max_concurrent - self._current_inflight

    async def acquire(self, timeout: float | None = None) -> BulkheadPermit:
        """Acquire a slot, waiting up to ``timeout`` seconds.

        Args:
            timeout: Seconds to wait (defaults to the configured max wait)

        Returns:
            Permit to pass back to ``release``

        Raises:
            LlmError: BULKHEAD_FULL if no slot became free in time
        """
        wait_limit = self._config.max_wait_seconds if timeout is None else timeout

        if wait_limit <= 0:
            if self._semaphore.locked():
                self._reject(wait_limit)
            await self._semaphore.acquire()
        else:
            try:
                await asyncio.wait_for(self._semaphore.acquire(), timeout=wait_limit)
            except asyncio.TimeoutError:
                self._reject(wait_limit)

        self._current_inflight += 1
        self._peak_inflight = max(self._peak_inflight, self._current_inflight)
        self._total_acquired += 1
        return BulkheadPermit(provider_id=self._name)

    def release(self, permit: BulkheadPermit) -> None:
        """Return a slot. Releasing the same permit twice is a no-op."""
        if permit.released:
            return
        permit.released = True
        self._current_inflight -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def permit(self, timeout: float | None = None) -> AsyncIterator[BulkheadPermit]:
        """Hold a slot for the duration of the block.

        The slot is released on success, on error and on cancellation.
        """
        held = await self.acquire(timeout)
        try:
            yield held
        finally:
            self.release(held)

    def _reject(self, timeout: float) -> None:
        self._total_rejected += 1
        logger.warning(
            "Bulkhead full, rejecting request",
            provider=self._name,
            max_concurrent=self._config.max_concurrent,
            inflight=self._current_inflight,
        )
        raise LlmError.bulkhead_full(self._name, timeout)

    def get_stats(self) -> dict[str, Any]:
        """Get bulkhead statistics."""
        return {
            "name": self._name,
            "max_concurrent": self._config.max_concurrent,
            "current_inflight": self._current_inflight,
            "peak_inflight": self._peak_inflight,
            "available_permits": self.available_permits,
            "total_acquired": self._total_acquired,
            "total_rejected": self._total_rejected,
        }

    def __repr__(self) -> str:
        return (
            f"Bulkhead({self._name}, inflight={self._current_inflight}/"
            f"{self._config.max_concurrent})"
        )
