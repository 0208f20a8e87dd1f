"""
Telemetry module for resilient-llm.

Provides structured logging with request-scoped context.
"""

from resilient_llm.telemetry.logger import (
    JsonFormatter,
    LlmLogger,
    LogContext,
    LogLevel,
    SensitiveDataMasker,
    TextFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
    truncate,
)

__all__ = [
    "JsonFormatter",
    "LlmLogger",
    "LogContext",
    "LogLevel",
    "SensitiveDataMasker",
    "TextFormatter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "set_log_context",
    "truncate",
]
