"""错误分类模块：将 HTTP 状态码与传输异常映射到统一的错误类别。

Error classification for provider calls.

Maps HTTP status codes and transport exceptions onto the ten error kinds used
by the resilience pipeline, and answers the two questions every layer asks:
is this error worth retrying, and does it say anything about provider health.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Standard error classification for provider calls."""

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    """Local rate limiter rejected the call before it was attempted."""

    BULKHEAD_FULL = "bulkhead_full"
    """No concurrency slot became free within the bulkhead wait time."""

    CIRCUIT_OPEN = "circuit_open"
    """Circuit breaker is open (or out of half-open probes)."""

    TIMEOUT = "timeout"
    """Request timed out or deadline exceeded."""

    NETWORK_ERROR = "network_error"
    """Connection refused, DNS failure, reset, or similar transport failure."""

    SERVER_ERROR = "server_error"
    """Transient provider-side failure (5xx)."""

    RATE_LIMITED = "rate_limited"
    """Provider throttled the request (HTTP 429)."""

    AUTH_ERROR = "auth_error"
    """Missing, invalid, or revoked credentials."""

    CLIENT_ERROR = "client_error"
    """Malformed request rejected by the provider (4xx other than 429)."""

    INVALID_RESPONSE = "invalid_response"
    """Provider answered with a body that could not be parsed."""

    @property
    def retryable(self) -> bool:
        """Whether a failure of this kind may be retried."""
        return self in _RETRYABLE_KINDS

    @property
    def is_admission(self) -> bool:
        """Whether this kind is a local admission rejection."""
        return self in _ADMISSION_KINDS


_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.NETWORK_ERROR,
        ErrorKind.SERVER_ERROR,
        ErrorKind.RATE_LIMITED,
    }
)

# Rejections produced by the pipeline itself; the provider never saw the call.
_ADMISSION_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.RATE_LIMIT_EXCEEDED,
        ErrorKind.BULKHEAD_FULL,
        ErrorKind.CIRCUIT_OPEN,
    }
)

_DEFAULT_STATUS_MAPPING: dict[int, ErrorKind] = {
    400: ErrorKind.CLIENT_ERROR,
    401: ErrorKind.AUTH_ERROR,
    403: ErrorKind.AUTH_ERROR,
    408: ErrorKind.TIMEOUT,
    429: ErrorKind.RATE_LIMITED,
}


def classify_http_status(status_code: int) -> ErrorKind:
    """Classify a non-2xx HTTP status into an error kind.

    Args:
        status_code: HTTP status code

    Returns:
        ErrorKind for the status
    """
    if status_code in _DEFAULT_STATUS_MAPPING:
        return _DEFAULT_STATUS_MAPPING[status_code]
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.CLIENT_ERROR


def is_retryable(error: BaseException) -> bool:
    """Check if an exception should trigger another attempt.

    Args:
        error: The exception raised by an attempt

    Returns:
        True if the error is retryable
    """
    from resilient_llm.errors.base import LlmError, ValidationError

    if isinstance(error, LlmError):
        return error.retryable
    if isinstance(error, ValidationError):
        return False
    # Raw transport failures that escaped an adapter
    return isinstance(error, (OSError, TimeoutError))


def counts_as_failure(error: BaseException) -> bool:
    """Check if an exception should count against provider health.

    Provider-raised errors, network failures and timeouts count. Caller bugs
    (validation, bad arguments) and local admission rejections do not.

    Args:
        error: The exception that ended a call

    Returns:
        True if the circuit breaker should record a failure
    """
    from resilient_llm.errors.base import LlmError, ValidationError

    if isinstance(error, ValidationError):
        return False
    if isinstance(error, LlmError):
        return not error.kind.is_admission
    return isinstance(error, (OSError, TimeoutError))
