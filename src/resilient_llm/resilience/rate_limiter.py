"""
Fixed-window rate limiter.

A quota of N permits is granted per window; at each window boundary the whole
quota becomes available again (no smooth leak). Waiters queue in arrival
order and are served FIFO as permits appear.

All methods must be called from the event loop that owns the limiter. State
changes happen between awaits, so they are atomic with respect to other
coroutines on that loop.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections import deque
from dataclasses import dataclass
from typing import Any

from resilient_llm.errors import LlmError, ValidationError
from resilient_llm.telemetry import get_logger

logger = get_logger("resilient_llm.resilience.rate_limiter")


@dataclass
class RateLimiterConfig:
    """Configuration for rate limiter.

    Attributes:
        limit_for_period: Permits per window (0 = unlimited)
        period_seconds: Window length
        timeout_seconds: Default time to wait for a permit
    """

    limit_for_period: int = 10
    period_seconds: float = 60.0
    timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.limit_for_period < 0:
            raise ValidationError(
                "limit_for_period must be >= 0",
                field="rate_limit.limit_for_period",
                actual=self.limit_for_period,
            )
        if self.period_seconds <= 0:
            raise ValidationError(
                "period_seconds must be positive",
                field="rate_limit.period_seconds",
                actual=self.period_seconds,
            )
        if self.timeout_seconds < 0:
            raise ValidationError(
                "timeout_seconds must be >= 0",
                field="rate_limit.timeout_seconds",
                actual=self.timeout_seconds,
            )

    @classmethod
    def from_rpm(cls, rpm: int, timeout_seconds: float = 5.0) -> RateLimiterConfig:
        """Create config from requests per minute."""
        return cls(limit_for_period=rpm, period_seconds=60.0, timeout_seconds=timeout_seconds)

    @classmethod
    def unlimited(cls) -> RateLimiterConfig:
        """Create an unlimited rate limiter config."""
        return cls(limit_for_period=0)

    @classmethod
    def from_env(cls, base: RateLimiterConfig | None = None) -> RateLimiterConfig:
        """Apply RESILIENT_LLM_RATE_LIMIT_* environment overrides."""
        base = base or cls()
        return cls(
            limit_for_period=int(
                os.getenv("RESILIENT_LLM_RATE_LIMIT_PER_PERIOD", base.limit_for_period)
            ),
            period_seconds=float(
                os.getenv("RESILIENT_LLM_RATE_LIMIT_PERIOD_SECS", base.period_seconds)
            ),
            timeout_seconds=float(
                os.getenv("RESILIENT_LLM_RATE_LIMIT_TIMEOUT_SECS", base.timeout_seconds)
            ),
        )


class RateLimiter:
    """Fixed-window rate limiter with FIFO waiters.

    Example:
        >>> limiter = RateLimiter(RateLimiterConfig.from_rpm(10), name="openai")
        >>> await limiter.acquire()  # waits up to 5s, then raises LlmError
        >>> # Make request
    """

    def __init__(
        self,
        config: RateLimiterConfig | None = None,
        name: str = "default",
    ) -> None:
        """Initialize rate limiter.

        Args:
            config: Rate limiter configuration
            name: Provider identifier this limiter guards
        """
        self._config = config or RateLimiterConfig()
        self._name = name

        self._permits = self._config.limit_for_period
        self._window_start = time.monotonic()
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._wake_handle: asyncio.TimerHandle | None = None

        self._total_acquired = 0
        self._total_rejected = 0
        self._total_waited = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_limited(self) -> bool:
        """Check if rate limiting is enabled."""
        return self._config.limit_for_period > 0

    @property
    def available_permits(self) -> int | None:
        """Permits left in the current window; None when unlimited."""
        if not self.is_limited:
            return None
        self._refresh(time.monotonic())
        return self._permits

    @property
    def waiting(self) -> int:
        """Number of callers queued for a permit."""
        return sum(1 for w in self._waiters if not w.done())

    def _refresh(self, now: float) -> None:
        """Roll the window forward, restoring the full quota at a boundary."""
        period = self._config.period_seconds
        elapsed = now - self._window_start
        if elapsed >= period:
            self._window_start += (elapsed // period) * period
            self._permits = self._config.limit_for_period

    def _prune(self) -> None:
        while self._waiters and self._waiters[0].done():
            self._waiters.popleft()

    def try_acquire(self) -> bool:
        """Take a permit without waiting.

        Never overtakes callers that are already queued.

        Returns:
            True if a permit was taken
        """
        if not self.is_limited:
            self._total_acquired += 1
            return True

        self._refresh(time.monotonic())
        self._prune()
        if not self._waiters and self._permits > 0:
            self._permits -= 1
            self._total_acquired += 1
            return True
        return False

    async def acquire(self, timeout: float | None = None) -> float:
        """Acquire a permit, waiting up to ``timeout`` seconds.

        Args:
            timeout: Seconds to wait (defaults to the configured timeout)

        Returns:
            Time spent waiting, in seconds

        Raises:
            LlmError: RATE_LIMIT_EXCEEDED if no permit arrived in time. No
                permit is consumed in that case.
        """
        if self.try_acquire():
            return 0.0

        wait_limit = self._config.timeout_seconds if timeout is None else timeout
        if wait_limit <= 0:
            self._reject(wait_limit)

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self._waiters.append(waiter)
        self._schedule_wake(loop)
        started = time.monotonic()

        try:
            await asyncio.wait_for(waiter, wait_limit)
        except asyncio.TimeoutError:
            if not self._granted(waiter):
                self._reject(wait_limit)
        except asyncio.CancelledError:
            if self._granted(waiter):
                # Granted just as we were cancelled; hand the permit on.
                self._permits += 1
                self._total_acquired -= 1
                self._drain()
            raise

        self._total_waited += 1
        return time.monotonic() - started

    @staticmethod
    def _granted(waiter: asyncio.Future[None]) -> bool:
        return waiter.done() and not waiter.cancelled()

    def _reject(self, timeout: float) -> None:
        self._total_rejected += 1
        logger.warning(
            "Rate limiter rejected request",
            provider=self._name,
            limit=self._config.limit_for_period,
            period_seconds=self._config.period_seconds,
        )
        raise LlmError.rate_limit_exceeded(self._name, timeout)

    def _schedule_wake(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._wake_handle is not None:
            return
        now = time.monotonic()
        self._refresh(now)
        if self._permits > 0:
            self._wake_handle = loop.call_soon(self._drain)
            return
        delay = max(0.0, self._window_start + self._config.period_seconds - now)
        self._wake_handle = loop.call_later(delay, self._drain)

    def _drain(self) -> None:
        """Hand out available permits to waiters in arrival order."""
        if self._wake_handle is not None:
            self._wake_handle.cancel()
            self._wake_handle = None
        self._refresh(time.monotonic())

        while self._waiters and self._permits > 0:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._permits -= 1
            self._total_acquired += 1
            waiter.set_result(None)

        self._prune()
        if self._waiters:
            self._schedule_wake(asyncio.get_running_loop())

    def get_stats(self) -> dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "name": self._name,
            "limit_for_period": self._config.limit_for_period,
            "period_seconds": self._config.period_seconds,
            "available_permits": self._permits if self.is_limited else None,
            "waiting": self.waiting,
            "total_acquired": self._total_acquired,
            "total_rejected": self._total_rejected,
            "total_waited": self._total_waited,
        }

    def __repr__(self) -> str:
        if not self.is_limited:
            return f"RateLimiter({self._name}, unlimited)"
        return (
            f"RateLimiter({self._name}, permits={self._permits}/"
            f"{self._config.limit_for_period} per {self._config.period_seconds}s)"
        )
