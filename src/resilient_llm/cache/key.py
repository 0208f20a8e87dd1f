"""
Cache key generation.

Keys are SHA-256 digests over ``"{provider_id}:{model}:{prompt}"`` so that
unbounded, user-influenced prompt text maps to a fixed-length key.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass


@dataclass(frozen=True)
class CacheKey:
    """A cache key with the inputs it was derived from.

    Attributes:
        key: 64-character hex digest
        provider_id: Provider identifier
        model: Model name
    """

    key: str
    provider_id: str = ""
    model: str = ""

    def __str__(self) -> str:
        return self.key

    @property
    def short(self) -> str:
        """Leading characters of the digest, for log lines."""
        return self.key[:8]


def fingerprint(provider_id: str, model: str, prompt: str) -> CacheKey:
    """Compute the cache fingerprint for a request.

    Args:
        provider_id: Provider identifier
        model: Model name
        prompt: Prompt text

    Returns:
        CacheKey wrapping the SHA-256 hex digest
    """
    composite = f"{provider_id}:{model}:{prompt}"
    digest = hashlib.sha256(composite.encode("utf-8")).hexdigest()
    return CacheKey(key=digest, provider_id=provider_id, model=model)
