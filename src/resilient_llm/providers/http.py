"""HTTP 传输基类：基于 httpx 的异步客户端，统一映射传输错误与 HTTP 状态码。

Base class for HTTP-backed provider clients.

Provides:
- Lazy ``httpx.AsyncClient`` creation on the loop that first uses it
- Mapping of transport failures and HTTP status codes onto ``ErrorKind``
- Per-call option resolution against client defaults
"""

from __future__ import annotations

import time
from abc import abstractmethod
from typing import Any, ClassVar

import httpx

from resilient_llm.errors import ErrorKind, LlmError, classify_http_status
from resilient_llm.providers.auth import require_api_key
from resilient_llm.providers.base import ProviderClient
from resilient_llm.telemetry import get_logger, truncate
from resilient_llm.types import LlmResponse, SendOptions

logger = get_logger("resilient_llm.providers.http")

_DEFAULT_TIMEOUT = 30.0
_DEFAULT_CONNECT_TIMEOUT = 10.0


class HttpProviderClient(ProviderClient):
    """Provider client speaking JSON over HTTP.

    Subclasses describe the wire format through ``build_request`` and
    ``parse_response``; everything else is shared.
    """

    PROVIDER_ID: ClassVar[str]
    BASE_URL: ClassVar[str]
    DEFAULT_MODEL: ClassVar[str]

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        base_url: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Explicit API key (overrides env/keyring)
            model: Default model
            max_tokens: Default completion limit
            temperature: Default sampling temperature
            base_url: Override the provider's base URL
            timeout: Request timeout in seconds
            transport: Custom httpx transport (e.g. ``httpx.MockTransport``)

        Raises:
            ValidationError: If no API key can be resolved
        """
        self._api_key = require_api_key(self.PROVIDER_ID, api_key)
        self._model = model or self.DEFAULT_MODEL
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._base_url = base_url or self.BASE_URL
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(
            "Provider client initialized",
            provider=self.PROVIDER_ID,
            model=self._model,
            max_tokens=max_tokens,
            temperature=temperature,
        )

    @property
    def provider_id(self) -> str:
        return self.PROVIDER_ID

    @property
    def default_model(self) -> str:
        return self._model

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout, connect=_DEFAULT_CONNECT_TIMEOUT),
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def resolve_options(self, options: SendOptions | None) -> SendOptions:
        """Fill unset options from the client defaults."""
        options = options or SendOptions()
        return SendOptions(
            model=options.model or self._model,
            max_tokens=options.max_tokens or self._max_tokens,
            temperature=(
                options.temperature if options.temperature is not None else self._temperature
            ),
            system_prompt=options.system_prompt,
        )

    @abstractmethod
    def build_request(
        self, prompt: str, options: SendOptions
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        """Build (path, json body, extra headers) for one call."""

    @abstractmethod
    def parse_response(self, data: dict[str, Any], model: str, latency_ms: int) -> LlmResponse:
        """Turn a decoded 2xx body into a response.

        Raises:
            LlmError: INVALID_RESPONSE when required fields are missing
        """

    async def send(self, prompt: str, options: SendOptions | None = None) -> LlmResponse:
        resolved = self.resolve_options(options)
        path, body, headers = self.build_request(prompt, resolved)

        logger.debug(
            "Sending request",
            provider=self.PROVIDER_ID,
            model=resolved.model,
            prompt_length=len(prompt),
        )
        started = time.monotonic()
        data = await self._post(path, body, headers)
        latency_ms = int((time.monotonic() - started) * 1000)

        try:
            response = self.parse_response(data, resolved.model or self._model, latency_ms)
        except LlmError:
            raise
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise self._error(
                f"Failed to parse {self.PROVIDER_ID} response: {e}",
                ErrorKind.INVALID_RESPONSE,
                cause=e,
            ) from e

        logger.debug(
            "Response received",
            provider=self.PROVIDER_ID,
            latency_ms=latency_ms,
            tokens=response.tokens_used,
        )
        return response

    async def _post(
        self, path: str, body: dict[str, Any], headers: dict[str, str]
    ) -> dict[str, Any]:
        """POST a JSON body and decode the JSON answer.

        Raises:
            LlmError: On transport failure, non-2xx status or undecodable body
        """
        client = self._get_client()
        try:
            response = await client.post(path, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise self._error(f"Request timed out: {e}", ErrorKind.TIMEOUT, cause=e) from e
        except httpx.HTTPError as e:
            raise self._error(
                f"Connection failed: {e}", ErrorKind.NETWORK_ERROR, cause=e
            ) from e

        if response.status_code >= 300:
            kind = classify_http_status(response.status_code)
            logger.error(
                "Provider API error",
                provider=self.PROVIDER_ID,
                status=response.status_code,
                body=truncate(response.text, 200),
            )
            raise self._error(
                f"{self.PROVIDER_ID} API error: HTTP {response.status_code}",
                kind,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise self._error(
                f"{self.PROVIDER_ID} returned a non-JSON body", ErrorKind.INVALID_RESPONSE, cause=e
            ) from e
        if not isinstance(data, dict):
            raise self._error(
                f"{self.PROVIDER_ID} returned a non-object body", ErrorKind.INVALID_RESPONSE
            )
        return data

    def _error(
        self,
        message: str,
        kind: ErrorKind,
        *,
        cause: BaseException | None = None,
        status_code: int | None = None,
    ) -> LlmError:
        return LlmError(
            message,
            kind=kind,
            provider_id=self.PROVIDER_ID,
            cause=cause,
            status_code=status_code,
        )

    async def __aenter__(self) -> HttpProviderClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
