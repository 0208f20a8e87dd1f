"""
API key resolution utilities.

Resolves API keys from multiple sources:
1. Explicit value
2. Environment variables
3. System keyring (optional)
"""

from __future__ import annotations

import os

from resilient_llm._features import HAS_KEYRING
from resilient_llm.errors import ValidationError
from resilient_llm.telemetry import get_logger

logger = get_logger("resilient_llm.providers.auth")

KEYRING_SERVICE = "resilient-llm"


def resolve_api_key(provider_id: str, explicit_key: str | None = None) -> str | None:
    """Resolve API key for a provider.

    Resolution order:
    1. Explicit key if provided
    2. Standard environment variable ({PROVIDER_ID}_API_KEY)
    3. System keyring (if available)

    Args:
        provider_id: Provider identifier (e.g., "openai", "groq")
        explicit_key: Explicitly provided API key

    Returns:
        Resolved API key or None if not found
    """
    if explicit_key:
        return explicit_key

    env_var = f"{provider_id.upper().replace('-', '_')}_API_KEY"
    key = os.getenv(env_var)
    if key:
        return key

    return _try_keyring(provider_id)


def require_api_key(provider_id: str, explicit_key: str | None = None) -> str:
    """Resolve an API key or fail.

    Raises:
        ValidationError: If no source provides a key
    """
    key = resolve_api_key(provider_id, explicit_key)
    if not key:
        raise ValidationError(
            f"{provider_id} API key cannot be empty",
            field="api_key",
        ).with_hint(f"set {provider_id.upper()}_API_KEY or pass api_key explicitly")
    return key


def _try_keyring(provider_id: str) -> str | None:
    """Try to get API key from system keyring.

    Args:
        provider_id: Provider identifier

    Returns:
        API key from keyring or None
    """
    if not HAS_KEYRING:
        return None

    import keyring

    try:
        return keyring.get_password(KEYRING_SERVICE, provider_id)
    except Exception as e:
        # No usable backend (common in containers, WSL, etc.)
        logger.debug("Keyring lookup failed", provider=provider_id, error=type(e).__name__)
        return None
