"""错误基类：提供分层错误体系和结构化错误上下文。

Base error classes for resilient-llm.

Provides a small layered hierarchy:
- ResilientLlmError: Base class for all library errors
- LlmError: A failed provider call or admission rejection, tagged with ErrorKind
- ValidationError: Programmer errors (bad arguments, bad configuration)
- PoolClosedError: Work submitted after the runtime was shut down
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from resilient_llm.errors.classification import ErrorKind


@dataclass
class ErrorContext:
    """Structured error context for diagnostics."""

    field_path: str | None = None
    """Path to the problematic field (e.g., 'prompt')"""

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'provider', 'resilience', 'validation')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.field_path:
            parts.append(f"at '{self.field_path}'")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class ResilientLlmError(Exception):
    """Base class for all resilient-llm errors.

    Attributes:
        message: Human-readable error message
        context: Optional structured error context
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message."""
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> ResilientLlmError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self


class LlmError(ResilientLlmError):
    """A provider call failure or a pipeline admission rejection.

    One exception type covers every failure kind; callers branch on ``kind``
    (or on the derived ``retryable`` flag) rather than on subclasses.

    Attributes:
        kind: Error classification
        provider_id: Provider the call was addressed to
        retryable: Whether the call may be retried
        status_code: HTTP status, when the failure came from a response
        time_until_retry: For CIRCUIT_OPEN, seconds until probing resumes
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        provider_id: str,
        retryable: bool | None = None,
        cause: BaseException | None = None,
        status_code: int | None = None,
        time_until_retry: float | None = None,
    ) -> None:
        ctx = ErrorContext(source="provider")
        ctx.details["kind"] = kind.value
        ctx.details["provider_id"] = provider_id
        if status_code is not None:
            ctx.details["status_code"] = status_code
        super().__init__(message, ctx)

        self.kind = kind
        self.provider_id = provider_id
        self.retryable = kind.retryable if retryable is None else retryable
        self.status_code = status_code
        self.time_until_retry = time_until_retry
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        """Underlying exception, if any."""
        return self.__cause__

    @classmethod
    def rate_limit_exceeded(cls, provider_id: str, timeout: float) -> LlmError:
        """Local rate limiter gave up waiting for a permit."""
        return cls(
            f"Rate limit exceeded: no permit within {timeout:.3g}s",
            kind=ErrorKind.RATE_LIMIT_EXCEEDED,
            provider_id=provider_id,
        )

    @classmethod
    def bulkhead_full(cls, provider_id: str, timeout: float) -> LlmError:
        """Bulkhead gave up waiting for a concurrency slot."""
        return cls(
            f"Bulkhead full: no slot within {timeout:.3g}s",
            kind=ErrorKind.BULKHEAD_FULL,
            provider_id=provider_id,
        )

    @classmethod
    def circuit_open(
        cls, provider_id: str, time_until_retry: float | None = None
    ) -> LlmError:
        """Circuit breaker rejected the call."""
        return cls(
            "Circuit breaker is open",
            kind=ErrorKind.CIRCUIT_OPEN,
            provider_id=provider_id,
            time_until_retry=time_until_retry,
        )

    def __repr__(self) -> str:
        return (
            f"LlmError(kind={self.kind.value}, provider_id={self.provider_id!r}, "
            f"retryable={self.retryable}, message={self.message!r})"
        )


class ValidationError(ResilientLlmError):
    """Programmer error: invalid arguments or configuration.

    Never retried, never cached, never counted against provider health.
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        field: str | None = None,
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        ctx = context or ErrorContext(source="validation")
        if field:
            ctx.field_path = field
        if expected is not None:
            ctx.details["expected"] = expected
        if actual is not None:
            ctx.details["actual"] = actual
        super().__init__(message, ctx)
        self.field = field
        self.expected = expected
        self.actual = actual


class PoolClosedError(ResilientLlmError):
    """Raised when work is submitted to a pool that has been shut down."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(
            f"Worker pool for '{provider_id}' has been shut down",
            ErrorContext(source="runtime"),
        )
        self.provider_id = provider_id
