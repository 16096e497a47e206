"""External language-model service.

Defines the :class:`ModelService` protocol (the three operations the
resilient client depends on) and an httpx implementation talking to an
OpenAI-compatible chat completions API in JSON mode.

Implementations return raw payloads (a JSON string or an already decoded
object). Schema validation happens in the resilient client so that an
invalid payload counts as a failed call.

Example usage:
    >>> from curlspec.config import ModelServiceConfig
    >>> from curlspec.intelligence.service import ChatCompletionModelService
    >>>
    >>> async with ChatCompletionModelService(ModelServiceConfig()) as service:
    ...     payload = await service.analyze_command("curl https://api.example.com/users")
"""

from __future__ import annotations

import os
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from curlspec.config import ModelServiceConfig
from curlspec.errors import (
    ModelAPIError,
    ModelAuthenticationError,
    ModelConnectionError,
    ModelRateLimitError,
    ModelResponseError,
    ModelTimeoutError,
)
from curlspec.intelligence.prompts import (
    build_command_messages,
    build_document_messages,
    build_optimize_messages,
)
from curlspec.models import APISpecification, ExtractionContext

logger = structlog.get_logger(__name__)


@runtime_checkable
class ModelService(Protocol):
    """Protocol for the external model service."""

    async def extract_document(
        self, markdown: str, context: ExtractionContext | None = None
    ) -> Any:
        """Extract every API of a markdown document."""
        ...

    async def analyze_command(
        self, raw_curl: str, context: ExtractionContext | None = None
    ) -> Any:
        """Extract the API specification of one curl command."""
        ...

    async def optimize_spec(
        self, spec: APISpecification, context: str | None = None
    ) -> Any:
        """Refine one API specification."""
        ...


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return str(data["error"].get("message", data["error"]))
    return str(data)[:200]


class ChatCompletionModelService:
    """Model service backed by an OpenAI-compatible chat completions API.

    Must be used as an async context manager.

    Args:
        config: Model service configuration
        transport: Optional httpx transport (tests pass httpx.MockTransport)

    Raises:
        ValueError: If no API key is configured and OPENAI_API_KEY is not set
    """

    def __init__(
        self,
        config: ModelServiceConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.api_key = config.api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Model API key required: set CURLSPEC_MODEL__API_KEY or OPENAI_API_KEY"
            )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(
            "model_service_initialized",
            base_url=config.base_url,
            model=config.model,
            timeout=config.timeout_seconds,
        )

    async def __aenter__(self) -> ChatCompletionModelService:
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "ChatCompletionModelService must be used as async context manager"
            )
        return self._client

    async def _complete(self, messages: list[dict[str, Any]], operation: str) -> str:
        """Send one chat completion request and return the message content.

        Raises:
            ModelTimeoutError: If the request times out
            ModelConnectionError: If the service cannot be reached
            ModelRateLimitError: On HTTP 429
            ModelAuthenticationError: On HTTP 401/403
            ModelAPIError: On any other non-2xx status
            ModelResponseError: If the response has no message content
        """
        client = self._get_client()
        payload = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
        }

        logger.debug("model_request", operation=operation, model=self.config.model)
        try:
            response = await client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise ModelTimeoutError(
                f"{operation} timed out after {self.config.timeout_seconds}s"
            ) from e
        except httpx.RequestError as e:
            raise ModelConnectionError(
                f"Request to model service at {self.config.base_url} failed: {e}"
            ) from e

        status = response.status_code
        if status == 429:
            raise ModelRateLimitError(
                f"Rate limited: {_error_detail(response)}",
                retry_after_seconds=_retry_after(response),
            )
        if status in (401, 403):
            raise ModelAuthenticationError(
                f"Authentication failed (HTTP {status}): {_error_detail(response)}"
            )
        if not 200 <= status < 300:
            raise ModelAPIError(
                f"API error: HTTP {status}: {_error_detail(response)}",
                status_code=status,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ModelResponseError(
                f"Malformed completion response for {operation}"
            ) from e
        if not content:
            raise ModelResponseError(f"No response content for {operation}")

        logger.debug(
            "model_response",
            operation=operation,
            content_length=len(content),
            usage=data.get("usage"),
        )
        return content

    async def extract_document(
        self, markdown: str, context: ExtractionContext | None = None
    ) -> str:
        """Extract every API of a markdown document."""
        return await self._complete(
            build_document_messages(markdown, context), "extract_document"
        )

    async def analyze_command(
        self, raw_curl: str, context: ExtractionContext | None = None
    ) -> str:
        """Extract the API specification of one curl command."""
        return await self._complete(
            build_command_messages(raw_curl, context), "analyze_command"
        )

    async def optimize_spec(
        self, spec: APISpecification, context: str | None = None
    ) -> str:
        """Refine one API specification."""
        return await self._complete(
            build_optimize_messages(spec, context), "optimize_spec"
        )
