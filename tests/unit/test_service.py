"""Unit tests for the chat completions model service.

Uses httpx.MockTransport to exercise status mapping without network access.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from curlspec.config import ModelServiceConfig
from curlspec.errors import (
    ModelAPIError,
    ModelAuthenticationError,
    ModelConnectionError,
    ModelRateLimitError,
    ModelResponseError,
    ModelTimeoutError,
)
from curlspec.intelligence.prompts import build_command_messages, build_document_messages
from curlspec.intelligence.service import ChatCompletionModelService
from curlspec.models import APISpecification, ExtractionContext

Handler = Callable[[httpx.Request], httpx.Response]


def completion(content: str | None) -> httpx.Response:
    """Build a chat completion response carrying the given content."""
    return httpx.Response(
        200,
        json={
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {"total_tokens": 42},
        },
    )


@pytest.fixture
def config() -> ModelServiceConfig:
    """Create a model service configuration with an API key."""
    return ModelServiceConfig(api_key="sk-test", base_url="https://llm.example.com/v1")


def service_for(config: ModelServiceConfig, handler: Handler) -> ChatCompletionModelService:
    """Build a service whose requests are answered by handler."""
    return ChatCompletionModelService(config, transport=httpx.MockTransport(handler))


class TestChatCompletionModelServiceInit:
    """Test construction and lifecycle."""

    def test_requires_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a missing key raises ValueError."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="API key required"):
            ChatCompletionModelService(ModelServiceConfig())

    def test_falls_back_to_openai_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that OPENAI_API_KEY is used when no key is configured."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        service = ChatCompletionModelService(ModelServiceConfig())
        assert service.api_key == "sk-env"

    @pytest.mark.asyncio
    async def test_requires_context_manager(self, config: ModelServiceConfig) -> None:
        """Test that calls outside the context manager raise RuntimeError."""
        service = service_for(config, lambda request: completion("{}"))
        with pytest.raises(RuntimeError, match="async context manager"):
            await service.analyze_command("curl https://a.io")


class TestChatCompletionRequests:
    """Test request construction and successful responses."""

    @pytest.mark.asyncio
    async def test_document_request(self, config: ModelServiceConfig) -> None:
        """Test that the document prompt is posted in JSON mode."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return completion('{"apis": []}')

        context = ExtractionContext(api_name="Users API")
        async with service_for(config, handler) as service:
            content = await service.extract_document("# Users", context)

        assert content == '{"apis": []}'
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"

        body = json.loads(request.content)
        assert body["model"] == "gpt-4"
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"] == build_document_messages("# Users", context)

    @pytest.mark.asyncio
    async def test_command_request(self, config: ModelServiceConfig) -> None:
        """Test that the command prompt carries the raw curl command."""
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return completion('{"name": "x"}')

        async with service_for(config, handler) as service:
            await service.analyze_command("curl https://a.io/users")

        assert seen[0]["messages"] == build_command_messages("curl https://a.io/users")
        assert "Curl command: curl https://a.io/users" in seen[0]["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_optimize_request_omits_provenance(self, config: ModelServiceConfig) -> None:
        """Test that the optimize prompt serializes the spec without provenance."""
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return completion("{}")

        spec = APISpecification(
            name="List", method="GET", url="https://a.io", curl_command="curl https://a.io"
        )
        async with service_for(config, handler) as service:
            await service.optimize_spec(spec, context="Users service")

        user = seen[0]["messages"][1]["content"]
        assert '"curlCommand": "curl https://a.io"' in user
        assert "provenance" not in user
        assert "Additional context: Users service" in user


class TestChatCompletionErrors:
    """Test mapping of transport failures and HTTP statuses."""

    @pytest.mark.asyncio
    async def test_rate_limit(self, config: ModelServiceConfig) -> None:
        """Test that HTTP 429 maps to ModelRateLimitError with Retry-After."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429,
                headers={"Retry-After": "7"},
                json={"error": {"message": "quota exceeded"}},
            )

        async with service_for(config, handler) as service:
            with pytest.raises(ModelRateLimitError, match="quota exceeded") as exc_info:
                await service.analyze_command("curl https://a.io")

        assert exc_info.value.retry_after_seconds == 7.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_authentication(self, config: ModelServiceConfig, status: int) -> None:
        """Test that 401 and 403 map to ModelAuthenticationError."""
        async with service_for(config, lambda r: httpx.Response(status)) as service:
            with pytest.raises(ModelAuthenticationError):
                await service.analyze_command("curl https://a.io")

    @pytest.mark.asyncio
    async def test_server_error(self, config: ModelServiceConfig) -> None:
        """Test that other statuses map to ModelAPIError with the status code."""
        handler: Handler = lambda r: httpx.Response(503, text="unavailable")  # noqa: E731
        async with service_for(config, handler) as service:
            with pytest.raises(ModelAPIError) as exc_info:
                await service.extract_document("# doc")

        assert exc_info.value.status_code == 503
        assert "unavailable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_content(self, config: ModelServiceConfig) -> None:
        """Test that a completion without content raises ModelResponseError."""
        async with service_for(config, lambda r: completion(None)) as service:
            with pytest.raises(ModelResponseError, match="No response content"):
                await service.analyze_command("curl https://a.io")

    @pytest.mark.asyncio
    async def test_malformed_completion(self, config: ModelServiceConfig) -> None:
        """Test that a response without choices raises ModelResponseError."""
        async with service_for(config, lambda r: httpx.Response(200, json={})) as service:
            with pytest.raises(ModelResponseError, match="Malformed"):
                await service.analyze_command("curl https://a.io")

    @pytest.mark.asyncio
    async def test_connection_error(self, config: ModelServiceConfig) -> None:
        """Test that connection failures map to ModelConnectionError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with service_for(config, handler) as service:
            with pytest.raises(ModelConnectionError, match="llm.example.com"):
                await service.analyze_command("curl https://a.io")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error_type",
        [httpx.RemoteProtocolError, httpx.ProxyError, httpx.DecodingError, httpx.ReadError],
    )
    async def test_transport_errors(
        self, config: ModelServiceConfig, error_type: type[httpx.RequestError]
    ) -> None:
        """Test that every other request failure maps to ModelConnectionError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise error_type("Server disconnected", request=request)

        async with service_for(config, handler) as service:
            with pytest.raises(ModelConnectionError, match="Server disconnected"):
                await service.analyze_command("curl https://a.io")

    @pytest.mark.asyncio
    async def test_timeout(self, config: ModelServiceConfig) -> None:
        """Test that transport timeouts map to ModelTimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with service_for(config, handler) as service:
            with pytest.raises(ModelTimeoutError):
                await service.analyze_command("curl https://a.io")
