"""
Immutable request and response values.

Responses are created once per completed call (or cache hit) and never
mutated; a cache-flagged variant is a copy.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LlmResponse(BaseModel):
    """A completed text-generation response.

    Example:
        >>> response = LlmResponse(
        ...     content='{"tasks": []}',
        ...     model="gpt-3.5-turbo",
        ...     provider_id="openai",
        ...     tokens_used=150,
        ...     latency_ms=1234,
        ... )
        >>> response.with_cache_flag(True).from_cache
        True
    """

    model_config = ConfigDict(frozen=True)

    content: str = Field(description="Generated text")
    model: str = Field(description="Model that produced the content")
    provider_id: str = Field(description="Provider identifier, or 'fallback'")
    tokens_used: int = Field(default=0, ge=0, description="Prompt + completion tokens")
    latency_ms: int = Field(default=0, ge=0, description="Wall time of the provider call")
    from_cache: bool = Field(default=False, description="Served from the response cache")

    def with_cache_flag(self, flag: bool) -> LlmResponse:
        """Return a copy with ``from_cache`` set to ``flag``."""
        if self.from_cache == flag:
            return self
        return self.model_copy(update={"from_cache": flag})

    def __repr__(self) -> str:
        return (
            f"LlmResponse(provider_id={self.provider_id!r}, model={self.model!r}, "
            f"tokens_used={self.tokens_used}, latency_ms={self.latency_ms}, "
            f"from_cache={self.from_cache}, content_length={len(self.content)})"
        )


class SendOptions(BaseModel):
    """Per-call overrides. Unset fields fall back to the provider's defaults."""

    model_config = ConfigDict(frozen=True)

    model: str | None = None
    max_tokens: int | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    system_prompt: str | None = None


class RequestContext(BaseModel):
    """Fully resolved request for one logical call."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    provider: str
    model: str
    max_tokens: int = Field(default=1000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    system_prompt: str | None = None

    def to_options(self) -> SendOptions:
        """Options to hand to the provider client."""
        return SendOptions(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system_prompt=self.system_prompt,
        )
