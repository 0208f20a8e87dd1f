"""Provider 适配层：每个后端一个 ProviderClient 实现。

Provider clients for resilient-llm.

Every backend implements the ``ProviderClient`` contract; resilience is added
by wrapping a client in a ``ResilientExecutor``.
"""

from resilient_llm.providers.auth import require_api_key, resolve_api_key
from resilient_llm.providers.base import ProviderClient
from resilient_llm.providers.gemini import GeminiClient
from resilient_llm.providers.http import HttpProviderClient
from resilient_llm.providers.openai import GroqClient, OpenAiClient

__all__ = [
    "GeminiClient",
    "GroqClient",
    "HttpProviderClient",
    "OpenAiClient",
    "ProviderClient",
    "require_api_key",
    "resolve_api_key",
]
