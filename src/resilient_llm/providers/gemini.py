"""
Google Gemini ``generateContent`` client.
"""

from __future__ import annotations

from typing import Any

from resilient_llm.errors import ErrorKind
from resilient_llm.providers.http import HttpProviderClient
from resilient_llm.telemetry import get_logger
from resilient_llm.types import LlmResponse, SendOptions

logger = get_logger("resilient_llm.providers.gemini")


class GeminiClient(HttpProviderClient):
    """Client for ``POST /models/{model}:generateContent``.

    Gemini has no system role in this API; a system prompt is prepended to the
    user text.
    """

    PROVIDER_ID = "gemini"
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL = "gemini-1.5-flash"

    def __init__(self, api_key: str | None = None, *, timeout: float = 60.0, **kwargs: Any) -> None:
        super().__init__(api_key, timeout=timeout, **kwargs)

    def build_request(
        self, prompt: str, options: SendOptions
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        text = f"{options.system_prompt}\n\n{prompt}" if options.system_prompt else prompt
        body = {
            "contents": [{"role": "user", "parts": [{"text": text}]}],
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_tokens,
            },
        }
        return (
            f"/models/{options.model}:generateContent",
            body,
            {"x-goog-api-key": self._api_key},
        )

    def parse_response(self, data: dict[str, Any], model: str, latency_ms: int) -> LlmResponse:
        candidates = data.get("candidates")
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason")
            if reason:
                raise self._error(
                    f"Gemini blocked the prompt: {reason}", ErrorKind.CLIENT_ERROR
                )
            raise self._error(
                "Gemini response missing 'candidates' array", ErrorKind.INVALID_RESPONSE
            )

        first = candidates[0]
        if first.get("finishReason") == "MAX_TOKENS":
            logger.warning("Response truncated due to MAX_TOKENS limit", provider=self.PROVIDER_ID)

        parts = (first.get("content") or {}).get("parts")
        if not parts:
            raise self._error(
                "Gemini response has no parts in content", ErrorKind.INVALID_RESPONSE
            )

        usage = data.get("usageMetadata") or {}
        return LlmResponse(
            content=parts[0]["text"],
            model=model,
            provider_id=self.PROVIDER_ID,
            tokens_used=int(usage.get("totalTokenCount", 0)),
            latency_ms=latency_ms,
        )
