"""Provider 客户端契约：每个后端一个实现，不含任何弹性逻辑。

Provider client contract.

A provider client performs exactly one request/response exchange per call.
It never retries, never caches and holds no shared lock across network I/O;
all of that belongs to the executor wrapped around it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from resilient_llm.types import LlmResponse, SendOptions


class ProviderClient(ABC):
    """Abstract text-generation backend.

    Implementations must be safe to call concurrently and must raise
    ``LlmError`` with one of the provider-side kinds (RATE_LIMITED, TIMEOUT,
    AUTH_ERROR, CLIENT_ERROR, SERVER_ERROR, INVALID_RESPONSE, NETWORK_ERROR)
    on failure.
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Stable provider identifier (e.g. "openai")."""

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Model used when the caller does not pick one."""

    @abstractmethod
    async def send(self, prompt: str, options: SendOptions | None = None) -> LlmResponse:
        """Send one prompt and return the completed response."""

    def is_healthy(self) -> bool:
        """Whether the backend is believed to be usable."""
        return True

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_id={self.provider_id!r})"
