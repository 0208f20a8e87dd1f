"""错误体系：为 provider 调用提供带类别标签的结构化错误类型。

Error hierarchy for resilient-llm.
"""

from resilient_llm.errors.base import (
    ErrorContext,
    LlmError,
    PoolClosedError,
    ResilientLlmError,
    ValidationError,
)
from resilient_llm.errors.classification import (
    ErrorKind,
    classify_http_status,
    counts_as_failure,
    is_retryable,
)

__all__ = [
    "ErrorContext",
    "ErrorKind",
    "LlmError",
    "PoolClosedError",
    "ResilientLlmError",
    "ValidationError",
    "classify_http_status",
    "counts_as_failure",
    "is_retryable",
]
