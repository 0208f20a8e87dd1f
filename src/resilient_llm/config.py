"""
Combined configuration for the resilient execution pipeline.

Sources, from lowest to highest precedence:
1. Code defaults
2. A YAML file (``ResilientConfig.from_yaml``)
3. ``RESILIENT_LLM_*`` environment variables (``ResilientConfig.from_env``)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from resilient_llm.cache import CacheConfig
from resilient_llm.errors import ValidationError
from resilient_llm.resilience.bulkhead import BulkheadConfig
from resilient_llm.resilience.circuit_breaker import CircuitBreakerConfig
from resilient_llm.resilience.rate_limiter import RateLimiterConfig
from resilient_llm.resilience.retry import RetryConfig


@dataclass
class PoolConfig:
    """Configuration for per-provider worker pools.

    Attributes:
        shutdown_grace_seconds: Time allowed for in-flight work on shutdown
    """

    shutdown_grace_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.shutdown_grace_seconds < 0:
            raise ValidationError(
                "shutdown_grace_seconds must be >= 0",
                field="pool.shutdown_grace_seconds",
                actual=self.shutdown_grace_seconds,
            )

    @classmethod
    def from_env(cls, base: PoolConfig | None = None) -> PoolConfig:
        """Apply RESILIENT_LLM_POOL_* environment overrides."""
        base = base or cls()
        return cls(
            shutdown_grace_seconds=float(
                os.getenv("RESILIENT_LLM_POOL_SHUTDOWN_GRACE_SECS", base.shutdown_grace_seconds)
            ),
        )


_SECTIONS: dict[str, type] = {
    "cache": CacheConfig,
    "rate_limit": RateLimiterConfig,
    "bulkhead": BulkheadConfig,
    "circuit_breaker": CircuitBreakerConfig,
    "retry": RetryConfig,
    "pool": PoolConfig,
}


@dataclass
class ResilientConfig:
    """Combined configuration for all resilience patterns.

    Attributes:
        cache: Response cache configuration
        rate_limit: Rate limiter configuration (per provider)
        bulkhead: Bulkhead configuration (per provider)
        circuit_breaker: Circuit breaker configuration (per provider)
        retry: Retry configuration
        pool: Worker pool configuration
        call_timeout_seconds: Deadline for one whole pipeline run (None = none)
    """

    cache: CacheConfig = field(default_factory=CacheConfig)
    rate_limit: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    bulkhead: BulkheadConfig = field(default_factory=BulkheadConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    call_timeout_seconds: float | None = 120.0

    def __post_init__(self) -> None:
        if self.call_timeout_seconds is not None and self.call_timeout_seconds <= 0:
            raise ValidationError(
                "call_timeout_seconds must be positive",
                field="call_timeout_seconds",
                actual=self.call_timeout_seconds,
            )

    @classmethod
    def default(cls) -> ResilientConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_mapping(
        cls, data: dict[str, Any], base: ResilientConfig | None = None
    ) -> ResilientConfig:
        """Overlay a nested mapping (as loaded from YAML) onto ``base``.

        Raises:
            ValidationError: On unknown sections, unknown keys or bad values
        """
        base = base or cls()
        merged: dict[str, Any] = {}

        for key, value in data.items():
            if key == "call_timeout_seconds":
                continue
            section_type = _SECTIONS.get(key)
            if section_type is None:
                raise ValidationError(f"Unknown configuration section '{key}'", field=key)
            if not isinstance(value, dict):
                raise ValidationError(
                    f"Section '{key}' must be a mapping", field=key, actual=type(value).__name__
                )
            current = getattr(base, key)
            known = {f.name for f in fields(section_type)}
            unknown = set(value) - known
            if unknown:
                raise ValidationError(
                    f"Unknown option(s) in '{key}': {', '.join(sorted(unknown))}",
                    field=key,
                    expected=sorted(known),
                )
            params = {name: getattr(current, name) for name in known}
            params.update(value)
            merged[key] = section_type(**params)

        timeout = data.get("call_timeout_seconds", base.call_timeout_seconds)
        return cls(
            cache=merged.get("cache", base.cache),
            rate_limit=merged.get("rate_limit", base.rate_limit),
            bulkhead=merged.get("bulkhead", base.bulkhead),
            circuit_breaker=merged.get("circuit_breaker", base.circuit_breaker),
            retry=merged.get("retry", base.retry),
            pool=merged.get("pool", base.pool),
            call_timeout_seconds=float(timeout) if timeout is not None else None,
        )

    @classmethod
    def from_yaml(cls, path: str | Path, base: ResilientConfig | None = None) -> ResilientConfig:
        """Load configuration from a YAML file.

        Args:
            path: File path
            base: Configuration to overlay (defaults to code defaults)

        Raises:
            ValidationError: If the file is not a mapping or holds bad values
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValidationError(
                "Configuration file must contain a mapping",
                field=str(path),
                actual=type(data).__name__,
            )
        return cls.from_mapping(data, base)

    @classmethod
    def from_env(cls, base: ResilientConfig | None = None) -> ResilientConfig:
        """Overlay ``RESILIENT_LLM_*`` environment variables onto ``base``.

        Raises:
            ValidationError: If a variable holds a malformed value
        """
        base = base or cls()
        try:
            timeout = os.getenv("RESILIENT_LLM_CALL_TIMEOUT_SECS")
            return cls(
                cache=CacheConfig.from_env(base.cache),
                rate_limit=RateLimiterConfig.from_env(base.rate_limit),
                bulkhead=BulkheadConfig.from_env(base.bulkhead),
                circuit_breaker=CircuitBreakerConfig.from_env(base.circuit_breaker),
                retry=RetryConfig.from_env(base.retry),
                pool=PoolConfig.from_env(base.pool),
                call_timeout_seconds=float(timeout) if timeout else base.call_timeout_seconds,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid environment configuration: {e}") from e

    @classmethod
    def load(cls, path: str | Path | None = None) -> ResilientConfig:
        """Defaults, then the optional YAML file, then the environment."""
        config = cls.from_yaml(path) if path is not None else cls()
        return cls.from_env(config)
