"""
Structured logging for resilient-llm.

Log calls take keyword fields (``logger.warning("Retry attempt", attempt=2)``).
Every line carries the pool thread name and, inside a pipeline run, the
request context (request id, provider, model). Provider keys and bearer
tokens are masked before anything is written.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
import time
from contextvars import ContextVar
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, ClassVar

from resilient_llm.errors import ValidationError

REDACTED = "***REDACTED***"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"

    def to_logging_level(self) -> int:
        return getattr(logging, self.value)


@dataclass(frozen=True)
class LogContext:
    """Request-scoped logging context, set once per pipeline run."""

    request_id: str | None = None
    provider: str | None = None
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v}


_log_context: ContextVar[LogContext | None] = ContextVar("resilient_llm_log_context", default=None)


def get_log_context() -> LogContext:
    return _log_context.get() or LogContext()


def set_log_context(context: LogContext) -> None:
    """Set the context for the current task; other tasks are unaffected."""
    _log_context.set(context)


def clear_log_context() -> None:
    _log_context.set(None)


class SensitiveDataMasker:
    """Masks provider API keys and bearer tokens in log output."""

    # (pattern, replacement); key prefixes cover the bundled providers
    PATTERNS: ClassVar[tuple[tuple[str, str], ...]] = (
        (r"\bsk-[A-Za-z0-9_\-]{20,}", "sk-" + REDACTED),
        (r"\bgsk_[A-Za-z0-9]{20,}", "gsk_" + REDACTED),
        (r"\bAIza[0-9A-Za-z_\-]{30,}", "AIza" + REDACTED),
        (r"(Bearer\s+)\S+", r"\1" + REDACTED),
        (r"(x-goog-api-key[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", r"\1" + REDACTED),
        (r"\b([A-Z][A-Z0-9_]*_API_KEY=)\S+", r"\1" + REDACTED),
    )
    SENSITIVE_KEYS: ClassVar[frozenset[str]] = frozenset(
        {"api_key", "apikey", "token", "secret", "password", "authorization"}
    )

    def __init__(self) -> None:
        self._patterns = [(re.compile(p, re.IGNORECASE), r) for p, r in self.PATTERNS]

    def mask(self, text: str) -> str:
        for pattern, replacement in self._patterns:
            text = pattern.sub(replacement, text)
        return text

    def mask_fields(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Mask secret-named fields and any key material inside string values."""
        result: dict[str, Any] = {}
        for key, value in fields.items():
            name = key.lower()
            # Counters such as "tokens_used" are not secrets
            if name in self.SENSITIVE_KEYS or name.endswith("_api_key"):
                result[key] = REDACTED
            elif isinstance(value, str):
                result[key] = self.mask(value)
            elif isinstance(value, dict):
                result[key] = self.mask_fields(value)
            else:
                result[key] = value
        return result


class _FieldFormatter(logging.Formatter):
    def __init__(self, masker: SensitiveDataMasker | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._masker = masker or SensitiveDataMasker()

    def _fields(self, record: logging.LogRecord) -> dict[str, Any]:
        fields = get_log_context().to_dict()
        fields.update(self._masker.mask_fields(getattr(record, "fields", {})))
        return fields


class JsonFormatter(_FieldFormatter):
    """One JSON object per line; fields are top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
            + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": self._masker.mask(record.getMessage()),
            **self._fields(record),
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class TextFormatter(_FieldFormatter):
    """``time | level | thread | logger | message | key=value ...``"""

    def __init__(self, masker: SensitiveDataMasker | None = None) -> None:
        super().__init__(
            masker,
            fmt="%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = self._masker.mask(super().format(record))
        fields = self._fields(record)
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


class LlmLogger:
    """Logger with keyword-field structured logging.

    Example:
        >>> logger = get_logger("resilient_llm.cache")
        >>> logger.debug("Cache hit", provider="openai", key="1a2b3c4d")
    """

    _loggers: ClassVar[dict[str, logging.Logger]] = {}
    _level: ClassVar[LogLevel] = LogLevel.INFO
    _handler: ClassVar[logging.Handler | None] = None

    @classmethod
    def configure(
        cls,
        level: LogLevel = LogLevel.INFO,
        format: str = "text",
        stream: Any = None,
    ) -> None:
        """Route every resilient-llm logger to one handler.

        Args:
            level: Minimum level written
            format: 'json' or 'text'
            stream: Output stream (default: stderr)
        """
        cls._level = level
        cls._handler = logging.StreamHandler(stream or sys.stderr)
        cls._handler.setFormatter(JsonFormatter() if format == "json" else TextFormatter())

        for logger in cls._loggers.values():
            cls._attach(logger)

    @classmethod
    def configure_from_env(cls, stream: Any = None) -> None:
        """Configure from RESILIENT_LLM_LOG_LEVEL and RESILIENT_LLM_LOG_FORMAT."""
        level = os.getenv("RESILIENT_LLM_LOG_LEVEL", cls._level.value).upper()
        try:
            log_level = LogLevel(level)
        except ValueError:
            raise ValidationError(
                f"Unknown log level '{level}'",
                field="RESILIENT_LLM_LOG_LEVEL",
                expected=[lv.value for lv in LogLevel],
            ) from None
        cls.configure(log_level, os.getenv("RESILIENT_LLM_LOG_FORMAT", "text").lower(), stream)

    @classmethod
    def _attach(cls, logger: logging.Logger) -> None:
        logger.handlers.clear()
        if cls._handler is not None:
            logger.addHandler(cls._handler)
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(TextFormatter())
            logger.addHandler(handler)
        logger.setLevel(cls._level.to_logging_level())
        logger.propagate = False

    @classmethod
    def get_logger(cls, name: str) -> LlmLogger:
        if name not in cls._loggers:
            logger = logging.getLogger(name)
            cls._attach(logger)
            cls._loggers[name] = logger
        return cls(cls._loggers[name])

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, exc_info: bool = False, **fields: Any) -> None:
        self._logger.log(level, msg, exc_info=exc_info, extra={"fields": fields})

    def debug(self, msg: str, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log(logging.INFO, msg, **fields)

    def warning(self, msg: str, **fields: Any) -> None:
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, **fields: Any) -> None:
        self._log(logging.ERROR, msg, **fields)

    def exception(self, msg: str, **fields: Any) -> None:
        """Log at error level with the current traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **fields)


def get_logger(name: str) -> LlmLogger:
    return LlmLogger.get_logger(name)


def truncate(text: str | None, max_length: int = 50) -> str:
    """Shorten free text (prompts, bodies) for log lines."""
    if text is None:
        return "[null]"
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
