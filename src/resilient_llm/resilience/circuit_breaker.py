"""
Circuit breaker for fault isolation.

Implements the circuit breaker pattern with three states:
- Closed: Normal operation, outcomes recorded in a sliding window
- Open: Circuit tripped, requests fail fast
- Half-Open: A fixed number of probe calls test whether the provider recovered

Health is read from other threads (``ResilientExecutor.is_healthy``), so
state is guarded by a ``threading.Lock``. The lock is never held across an
await.
"""

from __future__ import annotations

import os
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from resilient_llm.errors import LlmError, ValidationError, counts_as_failure
from resilient_llm.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("resilient_llm.resilience.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker.

    Attributes:
        sliding_window_size: Number of recent outcomes considered
        failure_rate_threshold: Failure percentage (0-100] that trips the circuit
        wait_duration_seconds: Time spent open before probing
        half_open_probes: Calls permitted while half-open
    """

    sliding_window_size: int = 10
    failure_rate_threshold: float = 50.0
    wait_duration_seconds: float = 30.0
    half_open_probes: int = 3

    def __post_init__(self) -> None:
        if self.sliding_window_size <= 0:
            raise ValidationError(
                "sliding_window_size must be positive",
                field="circuit_breaker.sliding_window_size",
                actual=self.sliding_window_size,
            )
        if not 0 < self.failure_rate_threshold <= 100:
            raise ValidationError(
                "failure_rate_threshold must be in (0, 100]",
                field="circuit_breaker.failure_rate_threshold",
                actual=self.failure_rate_threshold,
            )
        if self.wait_duration_seconds < 0:
            raise ValidationError(
                "wait_duration_seconds must be >= 0",
                field="circuit_breaker.wait_duration_seconds",
                actual=self.wait_duration_seconds,
            )
        if self.half_open_probes <= 0:
            raise ValidationError(
                "half_open_probes must be positive",
                field="circuit_breaker.half_open_probes",
                actual=self.half_open_probes,
            )

    @classmethod
    def default(cls) -> CircuitBreakerConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls, base: CircuitBreakerConfig | None = None) -> CircuitBreakerConfig:
        """Apply RESILIENT_LLM_BREAKER_* environment overrides."""
        base = base or cls()
        return cls(
            sliding_window_size=int(
                os.getenv("RESILIENT_LLM_BREAKER_WINDOW_SIZE", base.sliding_window_size)
            ),
            failure_rate_threshold=float(
                os.getenv(
                    "RESILIENT_LLM_BREAKER_FAILURE_RATE", base.failure_rate_threshold
                )
            ),
            wait_duration_seconds=float(
                os.getenv("RESILIENT_LLM_BREAKER_WAIT_SECS", base.wait_duration_seconds)
            ),
            half_open_probes=int(
                os.getenv("RESILIENT_LLM_BREAKER_HALF_OPEN_PROBES", base.half_open_probes)
            ),
        )


@dataclass
class CircuitStats:
    """Snapshot of circuit breaker statistics."""

    state: CircuitState = CircuitState.CLOSED
    failure_rate: float = 0.0
    buffered_calls: int = 0
    failed_calls: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    time_until_retry: float | None = None


class CircuitBreaker:
    """Failure-rate circuit breaker.

    Callers ask for permission, run the call, then report the outcome:

    Example:
        >>> breaker = CircuitBreaker(CircuitBreakerConfig(), name="openai")
        >>> breaker.acquire_permission()  # raises LlmError(CIRCUIT_OPEN)
        >>> try:
        ...     result = await call()
        ... except Exception as e:
        ...     breaker.on_error(e)
        ...     raise
        >>> breaker.on_success()
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            config: Circuit breaker configuration
            name: Provider identifier this breaker guards
            clock: Monotonic time source (seconds)
        """
        self._config = config or CircuitBreakerConfig()
        self._name = name
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._window: deque[bool] = deque(maxlen=self._config.sliding_window_size)
        self._opened_at: float | None = None

        # Half-open state management
        self._probes_remaining = 0
        self._probe_successes = 0

        # Statistics
        self._successful_requests = 0
        self._failed_requests = 0
        self._rejected_requests = 0
        self._state_changes = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state == CircuitState.HALF_OPEN

    @property
    def failure_rate(self) -> float:
        """Failure percentage over the buffered outcomes (0 when empty)."""
        with self._lock:
            return self._failure_rate()

    def _failure_rate(self) -> float:
        if not self._window:
            return 0.0
        failures = sum(1 for ok in self._window if not ok)
        return failures * 100.0 / len(self._window)

    def acquire_permission(self) -> None:
        """Ask to make a call.

        Raises:
            LlmError: CIRCUIT_OPEN while open, or when half-open probes are used up
        """
        with self._lock:
            if self._state == CircuitState.OPEN and self._wait_elapsed():
                self._transition_to(CircuitState.HALF_OPEN)

            if self._state == CircuitState.CLOSED:
                return
            if self._state == CircuitState.HALF_OPEN and self._probes_remaining > 0:
                self._probes_remaining -= 1
                return

            self._rejected_requests += 1
            remaining = self._time_until_retry()

        raise LlmError.circuit_open(self._name, remaining)

    def release_permission(self) -> None:
        """Give back a permission whose call never produced an outcome."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probes_remaining = min(
                    self._probes_remaining + 1, self._config.half_open_probes
                )

    def on_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            self._successful_requests += 1
            if self._state == CircuitState.HALF_OPEN:
                self._probe_successes += 1
                if self._probe_successes >= self._config.half_open_probes:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._window.append(True)

    def on_error(self, error: BaseException) -> None:
        """Record a failed call.

        Errors that say nothing about provider health (validation errors,
        admission rejections, unexpected exceptions) are ignored and their
        half-open permission is returned.
        """
        if not counts_as_failure(error):
            self.release_permission()
            return

        with self._lock:
            self._failed_requests += 1
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._window.append(False)
                if (
                    len(self._window) == self._config.sliding_window_size
                    and self._failure_rate() >= self._config.failure_rate_threshold
                ):
                    self._transition_to(CircuitState.OPEN)

    def get_time_until_retry(self) -> float | None:
        """Get time until the circuit will allow probes.

        Returns:
            Seconds until retry, or None if not open
        """
        with self._lock:
            return self._time_until_retry()

    def _time_until_retry(self) -> float | None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        elapsed = self._clock() - self._opened_at
        return max(0.0, self._config.wait_duration_seconds - elapsed)

    def _wait_elapsed(self) -> bool:
        return (
            self._opened_at is not None
            and self._clock() - self._opened_at >= self._config.wait_duration_seconds
        )

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state. Caller holds the lock."""
        old_state = self._state
        if new_state == old_state:
            return

        self._state = new_state
        self._state_changes += 1

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._probes_remaining = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._probes_remaining = self._config.half_open_probes
            self._probe_successes = 0
        elif new_state == CircuitState.CLOSED:
            self._window.clear()
            self._opened_at = None

        logger.warning(
            "Circuit breaker state transition",
            provider=self._name,
            from_state=old_state.value,
            to_state=new_state.value,
        )

    def reset(self) -> None:
        """Reset circuit breaker to closed state with an empty window."""
        with self._lock:
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)
            self._window.clear()
            self._opened_at = None
            self._probes_remaining = 0
            self._probe_successes = 0
        logger.info("Circuit breaker reset", provider=self._name)

    def get_stats(self) -> CircuitStats:
        """Get circuit breaker statistics.

        Returns:
            CircuitStats with current statistics
        """
        with self._lock:
            return CircuitStats(
                state=self._state,
                failure_rate=self._failure_rate(),
                buffered_calls=len(self._window),
                failed_calls=sum(1 for ok in self._window if not ok),
                successful_requests=self._successful_requests,
                failed_requests=self._failed_requests,
                rejected_requests=self._rejected_requests,
                state_changes=self._state_changes,
                time_until_retry=self._time_until_retry(),
            )

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker({self._name}, state={self._state.value}, "
            f"window={len(self._window)}/{self._config.sliding_window_size})"
        )
