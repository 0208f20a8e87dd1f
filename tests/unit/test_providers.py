"""Tests for HTTP provider clients."""

import json

import httpx
import pytest

from resilient_llm.errors import ErrorKind, LlmError, ValidationError
from resilient_llm.providers import GeminiClient, GroqClient, OpenAiClient, resolve_api_key
from resilient_llm.types import SendOptions


def _openai_body(content: str = "Hello!", tokens: int = 42) -> dict:
    return {
        "id": "chatcmpl-1",
        "model": "gpt-3.5-turbo-0125",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 30, "completion_tokens": 12, "total_tokens": tokens},
    }


def _gemini_body(text: str = "Hi there", tokens: int = 17, finish: str = "STOP") -> dict:
    return {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": finish}
        ],
        "usageMetadata": {"totalTokenCount": tokens},
    }


class Recorder:
    """MockTransport handler that records requests and replays one answer."""

    def __init__(self, status: int = 200, body: object = None, text: str | None = None) -> None:
        self.status = status
        self.body = body
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.body)

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def _openai(handler, **kwargs) -> OpenAiClient:
    return OpenAiClient("sk-test", transport=httpx.MockTransport(handler), **kwargs)


class TestOpenAiClient:
    """Tests for OpenAiClient."""

    @pytest.mark.asyncio
    async def test_send(self) -> None:
        recorder = Recorder(body=_openai_body())
        async with _openai(recorder) as client:
            response = await client.send("Build a house")

        assert response.content == "Hello!"
        assert response.provider_id == "openai"
        assert response.model == "gpt-3.5-turbo-0125"
        assert response.tokens_used == 42
        assert response.latency_ms >= 0
        assert response.from_cache is False

    @pytest.mark.asyncio
    async def test_request_shape(self) -> None:
        recorder = Recorder(body=_openai_body())
        client = _openai(recorder, max_tokens=200, temperature=0.3)
        await client.send("hi", SendOptions(system_prompt="You are a bot"))
        await client.aclose()

        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.headers["Content-Type"] == "application/json"
        assert recorder.last_json == {
            "model": "gpt-3.5-turbo",
            "messages": [
                {"role": "system", "content": "You are a bot"},
                {"role": "user", "content": "hi"},
            ],
            "max_tokens": 200,
            "temperature": 0.3,
        }

    @pytest.mark.asyncio
    async def test_options_override_defaults(self) -> None:
        recorder = Recorder(body=_openai_body())
        client = _openai(recorder)
        await client.send("hi", SendOptions(model="gpt-4o", max_tokens=5, temperature=0.0))
        await client.aclose()

        body = recorder.last_json
        assert body["model"] == "gpt-4o"
        assert body["max_tokens"] == 5
        assert body["temperature"] == 0.0
        assert body["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "kind", "retryable"),
        [
            (429, ErrorKind.RATE_LIMITED, True),
            (500, ErrorKind.SERVER_ERROR, True),
            (503, ErrorKind.SERVER_ERROR, True),
            (401, ErrorKind.AUTH_ERROR, False),
            (403, ErrorKind.AUTH_ERROR, False),
            (400, ErrorKind.CLIENT_ERROR, False),
            (404, ErrorKind.CLIENT_ERROR, False),
        ],
    )
    async def test_status_mapping(self, status: int, kind: ErrorKind, retryable: bool) -> None:
        client = _openai(Recorder(status=status, body={"error": {"message": "nope"}}))
        with pytest.raises(LlmError) as exc_info:
            await client.send("hi")
        await client.aclose()

        err = exc_info.value
        assert err.kind == kind
        assert err.retryable is retryable
        assert err.status_code == status
        assert err.provider_id == "openai"

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        client = _openai(Recorder(text="<html>gateway</html>"))
        with pytest.raises(LlmError) as exc_info:
            await client.send("hi")
        assert exc_info.value.kind == ErrorKind.INVALID_RESPONSE
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_object_body(self) -> None:
        client = _openai(Recorder(body=["not", "an", "object"]))
        with pytest.raises(LlmError) as exc_info:
            await client.send("hi")
        assert exc_info.value.kind == ErrorKind.INVALID_RESPONSE
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"choices": []},
            {"usage": {"total_tokens": 1}},
            {"choices": [{"message": {}}]},
            {"choices": [{"message": {"content": None}}]},
        ],
    )
    async def test_malformed_choices(self, body: dict) -> None:
        client = _openai(Recorder(body=body))
        with pytest.raises(LlmError) as exc_info:
            await client.send("hi")
        assert exc_info.value.kind == ErrorKind.INVALID_RESPONSE
        assert exc_info.value.retryable is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_usage_counts_zero(self) -> None:
        body = _openai_body()
        del body["usage"]
        client = _openai(Recorder(body=body))
        response = await client.send("hi")
        assert response.tokens_used == 0
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connect_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _openai(handler)
        with pytest.raises(LlmError) as exc_info:
            await client.send("hi")
        assert exc_info.value.kind == ErrorKind.NETWORK_ERROR
        assert isinstance(exc_info.value.cause, httpx.ConnectError)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_read_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = _openai(handler)
        with pytest.raises(LlmError) as exc_info:
            await client.send("hi")
        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert exc_info.value.retryable is True
        await client.aclose()


class TestGroqClient:
    @pytest.mark.asyncio
    async def test_uses_groq_endpoint(self) -> None:
        recorder = Recorder(body=_openai_body(content="yo"))
        client = GroqClient("gsk-test", transport=httpx.MockTransport(recorder))
        response = await client.send("hi")
        await client.aclose()

        assert str(recorder.requests[0].url) == "https://api.groq.com/openai/v1/chat/completions"
        assert recorder.last_json["model"] == "llama-3.1-8b-instant"
        assert response.provider_id == "groq"
        assert response.content == "yo"


class TestGeminiClient:
    """Tests for GeminiClient."""

    @pytest.mark.asyncio
    async def test_send(self) -> None:
        recorder = Recorder(body=_gemini_body())
        client = GeminiClient("AIza-test", transport=httpx.MockTransport(recorder))
        response = await client.send("hi", SendOptions(system_prompt="Be brief"))
        await client.aclose()

        request = recorder.requests[0]
        assert request.url.path == "/v1beta/models/gemini-1.5-flash:generateContent"
        assert request.headers["x-goog-api-key"] == "AIza-test"
        body = recorder.last_json
        assert body["contents"][0]["parts"][0]["text"] == "Be brief\n\nhi"
        assert body["generationConfig"] == {"temperature": 0.7, "maxOutputTokens": 1000}

        assert response.content == "Hi there"
        assert response.provider_id == "gemini"
        assert response.model == "gemini-1.5-flash"
        assert response.tokens_used == 17

    @pytest.mark.asyncio
    async def test_truncated_response_still_returned(self) -> None:
        client = GeminiClient(
            "AIza-test",
            transport=httpx.MockTransport(Recorder(body=_gemini_body(finish="MAX_TOKENS"))),
        )
        response = await client.send("hi")
        assert response.content == "Hi there"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_blocked_prompt(self) -> None:
        body = {"promptFeedback": {"blockReason": "SAFETY"}}
        client = GeminiClient("AIza-test", transport=httpx.MockTransport(Recorder(body=body)))
        with pytest.raises(LlmError) as exc_info:
            await client.send("hi")
        assert exc_info.value.kind == ErrorKind.CLIENT_ERROR
        assert "SAFETY" in str(exc_info.value)
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"candidates": []},
            {"candidates": [{"content": {"parts": []}}]},
            {"candidates": [{"finishReason": "STOP"}]},
        ],
    )
    async def test_malformed(self, body: dict) -> None:
        client = GeminiClient("AIza-test", transport=httpx.MockTransport(Recorder(body=body)))
        with pytest.raises(LlmError) as exc_info:
            await client.send("hi")
        assert exc_info.value.kind == ErrorKind.INVALID_RESPONSE
        await client.aclose()


class TestApiKeys:
    """Tests for API key resolution."""

    def test_explicit_key_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert resolve_api_key("openai", "sk-explicit") == "sk-explicit"

    def test_env_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GROQ_API_KEY", "gsk-env")
        client = GroqClient()
        assert client.default_model == "llama-3.1-8b-instant"
        assert resolve_api_key("groq") == "gsk-env"

    def test_missing_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.setattr("resilient_llm.providers.auth.HAS_KEYRING", False)

        with pytest.raises(ValidationError) as exc_info:
            OpenAiClient()
        assert exc_info.value.field == "api_key"
        assert "OPENAI_API_KEY" in str(exc_info.value)

    def test_keyring_failure_is_not_fatal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        keyring = pytest.importorskip("keyring")

        def broken(service: str, username: str) -> str:
            raise RuntimeError("no backend")

        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setattr("resilient_llm.providers.auth.HAS_KEYRING", True)
        monkeypatch.setattr(keyring, "get_password", broken)
        assert resolve_api_key("gemini") is None

