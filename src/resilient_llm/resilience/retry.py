"""
Retry policy with exponential backoff and optional jitter.

The backoff sleep is ``asyncio.sleep``, so a waiting retry suspends only its
own logical call and never blocks a worker.
"""

from __future__ import annotations

import asyncio
import os
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from resilient_llm.errors import ValidationError, is_retryable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class JitterStrategy(str, Enum):
    """Jitter strategy for retry delays."""

    NONE = "none"
    FULL = "full"
    EQUAL = "equal"


@dataclass
class RetryConfig:
    """Configuration for retry policy.

    Attributes:
        max_attempts: Total attempts, including the first call
        base_delay_ms: Delay before the first retry in milliseconds
        multiplier: Backoff multiplier applied per retry
        max_delay_ms: Optional cap on any single delay
        jitter: Jitter strategy (none, full, equal)
    """

    max_attempts: int = 3
    base_delay_ms: int = 1000
    multiplier: float = 2.0
    max_delay_ms: int | None = None
    jitter: JitterStrategy = JitterStrategy.NONE

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValidationError(
                "max_attempts must be >= 1",
                field="retry.max_attempts",
                actual=self.max_attempts,
            )
        if self.base_delay_ms < 0:
            raise ValidationError(
                "base_delay_ms must be >= 0",
                field="retry.base_delay_ms",
                actual=self.base_delay_ms,
            )
        if self.multiplier < 1:
            raise ValidationError(
                "multiplier must be >= 1", field="retry.multiplier", actual=self.multiplier
            )
        if isinstance(self.jitter, str):
            self.jitter = JitterStrategy(self.jitter)

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Create a config that disables retries."""
        return cls(max_attempts=1)

    @classmethod
    def from_env(cls, base: RetryConfig | None = None) -> RetryConfig:
        """Apply RESILIENT_LLM_RETRY_* environment overrides."""
        base = base or cls()
        max_delay = os.getenv("RESILIENT_LLM_RETRY_MAX_DELAY_MS")
        return cls(
            max_attempts=int(os.getenv("RESILIENT_LLM_RETRY_MAX_ATTEMPTS", base.max_attempts)),
            base_delay_ms=int(
                os.getenv("RESILIENT_LLM_RETRY_BASE_DELAY_MS", base.base_delay_ms)
            ),
            multiplier=float(os.getenv("RESILIENT_LLM_RETRY_MULTIPLIER", base.multiplier)),
            max_delay_ms=int(max_delay) if max_delay else base.max_delay_ms,
            jitter=JitterStrategy(os.getenv("RESILIENT_LLM_RETRY_JITTER", base.jitter.value)),
        )


@dataclass
class RetryAttempt:
    """Passed to the ``on_retry`` observer before each backoff sleep.

    Attributes:
        attempt: Number of the attempt that just failed (1-based)
        error: The error it failed with
        next_delay: Seconds until the next attempt
    """

    attempt: int
    error: Exception
    next_delay: float


@dataclass
class RetryResult:
    """Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        value: The result value (if success)
        error: The last error (if failed)
        attempts: Number of attempts made
        delays: Backoff delays slept, in seconds
    """

    success: bool
    value: Any = None
    error: Exception | None = None
    attempts: int = 0
    delays: list[float] = field(default_factory=list)

    @property
    def total_delay_ms(self) -> float:
        return sum(self.delays) * 1000


class RetryPolicy:
    """Bounded retry with exponential backoff.

    Example:
        >>> policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay_ms=1000))
        >>> result = await policy.execute(async_operation)
        >>> if result.success:
        ...     print(result.value)
        ... else:
        ...     print(f"Failed after {result.attempts} attempts")
    """

    def __init__(self, config: RetryConfig | None = None) -> None:
        """Initialize retry policy.

        Args:
            config: Retry configuration
        """
        self._config = config or RetryConfig()

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay after a failed attempt.

        Args:
            attempt: Number of the failed attempt (1-based)

        Returns:
            Delay in seconds
        """
        delay_ms = self._config.base_delay_ms * (self._config.multiplier ** (attempt - 1))

        if self._config.max_delay_ms is not None:
            delay_ms = min(delay_ms, self._config.max_delay_ms)

        if self._config.jitter == JitterStrategy.FULL:
            delay_ms = random.uniform(0, delay_ms)
        elif self._config.jitter == JitterStrategy.EQUAL:
            delay_ms = delay_ms / 2 + random.uniform(0, delay_ms / 2)

        return delay_ms / 1000.0

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Check if an error should trigger another attempt.

        Args:
            error: The exception that occurred
            attempt: Number of attempts made so far

        Returns:
            True if should retry
        """
        if attempt >= self._config.max_attempts:
            return False
        return is_retryable(error)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Callable[[RetryAttempt], None] | None = None,
    ) -> RetryResult:
        """Execute an operation with retry.

        Args:
            operation: Async operation to execute
            on_retry: Optional callback called before each backoff sleep

        Returns:
            RetryResult with success status and value/error
        """
        delays: list[float] = []
        attempt = 0

        while True:
            attempt += 1
            try:
                result = await operation()
            except Exception as e:
                if not self.should_retry(e, attempt):
                    return RetryResult(
                        success=False, error=e, attempts=attempt, delays=delays
                    )

                delay = self.calculate_delay(attempt)
                delays.append(delay)
                if on_retry:
                    on_retry(RetryAttempt(attempt=attempt, error=e, next_delay=delay))
                await asyncio.sleep(delay)
            else:
                return RetryResult(
                    success=True, value=result, attempts=attempt, delays=delays
                )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: Callable[[RetryAttempt], None] | None = None,
) -> T:
    """Execute an operation with retry, raising on failure.

    Args:
        operation: Async operation to execute
        config: Retry configuration
        on_retry: Optional callback called before each retry

    Returns:
        Operation result

    Raises:
        The last exception if all attempts fail
    """
    policy = RetryPolicy(config)
    result = await policy.execute(operation, on_retry)

    if result.success:
        return result.value
    raise result.error  # type: ignore[misc]
