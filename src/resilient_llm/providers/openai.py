"""
OpenAI-compatible chat completions clients.

Groq serves the same wire format under its own base URL, so both share one
implementation.
"""

from __future__ import annotations

from typing import Any

from resilient_llm.errors import ErrorKind
from resilient_llm.providers.http import HttpProviderClient
from resilient_llm.types import LlmResponse, SendOptions


class OpenAiClient(HttpProviderClient):
    """Client for ``POST /chat/completions``.

    Example:
        >>> client = OpenAiClient(model="gpt-3.5-turbo")  # key from OPENAI_API_KEY
        >>> response = await client.send("Build a house")
    """

    PROVIDER_ID = "openai"
    BASE_URL = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-3.5-turbo"

    def build_request(
        self, prompt: str, options: SendOptions
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        messages: list[dict[str, str]] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        body = {
            "model": options.model,
            "messages": messages,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        return "/chat/completions", body, {"Authorization": f"Bearer {self._api_key}"}

    def parse_response(self, data: dict[str, Any], model: str, latency_ms: int) -> LlmResponse:
        choices = data.get("choices")
        if not choices:
            raise self._error(
                f"{self.PROVIDER_ID} response missing 'choices' array",
                ErrorKind.INVALID_RESPONSE,
            )

        content = choices[0]["message"]["content"]
        if content is None:
            raise self._error(
                f"{self.PROVIDER_ID} response has no message content",
                ErrorKind.INVALID_RESPONSE,
            )

        usage = data.get("usage") or {}
        return LlmResponse(
            content=content,
            model=data.get("model") or model,
            provider_id=self.PROVIDER_ID,
            tokens_used=int(usage.get("total_tokens", 0)),
            latency_ms=latency_ms,
        )


class GroqClient(OpenAiClient):
    """Groq's OpenAI-compatible endpoint."""

    PROVIDER_ID = "groq"
    BASE_URL = "https://api.groq.com/openai/v1"
    DEFAULT_MODEL = "llama-3.1-8b-instant"
