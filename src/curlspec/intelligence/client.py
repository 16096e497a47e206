"""Resilient client for the external model service.

Wraps a :class:`ModelService` so that every operation runs as
``breaker(retry(attempt))``. Each attempt runs under a deadline and
validates the payload against the shared data model; a timeout or an
invalid payload is a failed attempt like any transport error. Untyped
payloads never leave this module.

Example usage:
    >>> client = ResilientModelClient(service)
    >>> extraction = await client.extract_document(markdown)
    >>> spec = await client.analyze_command("curl https://api.example.com/users")
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from curlspec.config import CurlspecConfig
from curlspec.errors import (
    CircuitOpenError,
    ModelError,
    ModelRateLimitError,
    ModelResponseError,
    ModelTimeoutError,
)
from curlspec.intelligence.resilience import (
    BreakerStatus,
    CircuitBreaker,
    RetryPolicy,
    Sleep,
    retry_with_backoff,
)
from curlspec.intelligence.service import ModelService
from curlspec.models import APISpecification, DocumentExtraction, ExtractionContext

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

HEALTH_CHECK_DOCUMENT = (
    '# Test API\n\n```bash\ncurl -X GET "https://api.example.com/test"\n```'
)

_JSON_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.DOTALL | re.IGNORECASE)


class HealthStatus(str, Enum):
    """Health of the external model service.

    Values:
        HEALTHY: A probe extraction succeeded
        DEGRADED: Rate limited or the circuit is open
        UNHEALTHY: The probe failed
    """

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthReport(BaseModel):
    """Result of a model service health check."""

    status: HealthStatus
    breaker: BreakerStatus
    latency_seconds: float = 0.0
    last_error: str | None = None


def extract_json(text: str) -> str | None:
    """Extract a JSON object from text that may wrap it in prose or fences.

    Args:
        text: Raw model output

    Returns:
        The JSON object text, or None when no object is found
    """
    stripped = text.strip()
    if stripped.startswith("{"):
        return stripped

    fenced = _JSON_FENCE.search(text)
    if fenced:
        return fenced.group(1).strip()

    first_brace = text.find("{")
    if first_brace == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False
    for index in range(first_brace, len(text)):
        char = text[index]
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[first_brace : index + 1]
    return None


def decode_payload(payload: Any, schema: type[M], operation: str) -> M:
    """Validate a raw service payload against a schema.

    Args:
        payload: JSON text or an already decoded object
        schema: Pydantic model to validate against
        operation: Operation name for error messages

    Returns:
        Validated model instance

    Raises:
        ModelResponseError: If the payload is not JSON or fails validation
    """
    data = payload
    if isinstance(payload, (str, bytes)):
        text = payload.decode() if isinstance(payload, bytes) else payload
        candidate = extract_json(text)
        if candidate is None:
            raise ModelResponseError(f"{operation} returned no JSON object")
        try:
            data = json.loads(candidate)
        except ValueError as e:
            raise ModelResponseError(f"{operation} returned invalid JSON: {e}") from e

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise ModelResponseError(
            f"{operation} response failed schema validation: "
            f"{e.error_count()} error(s), first: {e.errors()[0]['msg']}"
        ) from e


class ResilientModelClient:
    """Model client with retry, circuit breaking, deadlines and validation.

    The breaker is owned by this instance; sharing the instance between
    concurrent tasks shares the breaker safely.

    Args:
        service: Underlying model service
        retry_policy: Retry policy (3 attempts, 1000 ms base by default)
        breaker: Circuit breaker (threshold 5, 60 s reset by default)
        call_timeout_seconds: Deadline per attempt, None to disable
        sleep: Async sleep used between retries (injectable for tests)
    """

    def __init__(
        self,
        service: ModelService,
        retry_policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        call_timeout_seconds: float | None = 60.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._service = service
        self._retry_policy = retry_policy or RetryPolicy()
        self._breaker = breaker or CircuitBreaker()
        self._call_timeout = call_timeout_seconds
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, service: ModelService, config: CurlspecConfig
    ) -> ResilientModelClient:
        """Build a client from the resilience and model configuration."""
        resilience = config.resilience
        return cls(
            service,
            retry_policy=RetryPolicy(
                max_attempts=resilience.max_attempts,
                base_delay_ms=resilience.base_delay_ms,
            ),
            breaker=CircuitBreaker(
                failure_threshold=resilience.failure_threshold,
                reset_timeout_ms=resilience.reset_timeout_ms,
            ),
            call_timeout_seconds=config.model.timeout_seconds,
        )

    async def _call(
        self,
        operation: str,
        invoke: Callable[[], Awaitable[Any]],
        schema: type[M],
    ) -> M:
        async def attempt() -> M:
            try:
                if self._call_timeout is None:
                    payload = await invoke()
                else:
                    payload = await asyncio.wait_for(invoke(), timeout=self._call_timeout)
            except asyncio.TimeoutError as e:
                raise ModelTimeoutError(
                    f"{operation} exceeded its {self._call_timeout}s deadline"
                ) from e
            return decode_payload(payload, schema, operation)

        async def with_retry() -> M:
            return await retry_with_backoff(
                attempt, self._retry_policy, operation, sleep=self._sleep
            )

        return await self._breaker.call(operation, with_retry)

    async def extract_document(
        self, markdown: str, context: ExtractionContext | None = None
    ) -> DocumentExtraction:
        """Extract every API of a markdown document.

        Args:
            markdown: Document text (usually preprocessed)
            context: Optional extraction hints

        Returns:
            Validated DocumentExtraction

        Raises:
            ModelError: When every attempt failed
            CircuitOpenError: When the breaker rejected the call
        """
        return await self._call(
            "extract_document",
            lambda: self._service.extract_document(markdown, context),
            DocumentExtraction,
        )

    async def analyze_command(
        self, raw_curl: str, context: ExtractionContext | None = None
    ) -> APISpecification:
        """Extract the API specification of one curl command.

        The returned specification records the analyzed command in
        ``curl_command``.

        Raises:
            ModelError: When every attempt failed
            CircuitOpenError: When the breaker rejected the call
        """
        spec = await self._call(
            "analyze_command",
            lambda: self._service.analyze_command(raw_curl, context),
            APISpecification,
        )
        return spec.model_copy(update={"curl_command": raw_curl})

    async def optimize_spec(
        self, spec: APISpecification, context: str | None = None
    ) -> APISpecification:
        """Refine one API specification.

        The source command and provenance of the input are carried over.

        Raises:
            ModelError: When every attempt failed
            CircuitOpenError: When the breaker rejected the call
        """
        optimized = await self._call(
            "optimize_spec",
            lambda: self._service.optimize_spec(spec, context),
            APISpecification,
        )
        return optimized.model_copy(
            update={
                "curl_command": optimized.curl_command or spec.curl_command,
                "provenance": spec.provenance,
            }
        )

    async def health_check(self) -> HealthReport:
        """Probe the service with a tiny document extraction.

        Returns:
            HealthReport; rate limiting and an open circuit report DEGRADED
        """
        start = time.monotonic()
        status = HealthStatus.HEALTHY
        last_error: str | None = None

        try:
            await self.extract_document(HEALTH_CHECK_DOCUMENT)
        except (CircuitOpenError, ModelRateLimitError) as e:
            status = HealthStatus.DEGRADED
            last_error = str(e)
        except ModelError as e:
            status = HealthStatus.UNHEALTHY
            last_error = str(e)

        report = HealthReport(
            status=status,
            breaker=self._breaker.status(),
            latency_seconds=time.monotonic() - start,
            last_error=last_error,
        )
        logger.info(
            "model_health_checked",
            status=status.value,
            latency_seconds=report.latency_seconds,
            error=last_error,
        )
        return report

    def breaker_status(self) -> BreakerStatus:
        """Report the circuit breaker's status."""
        return self._breaker.status()

    def reset(self) -> None:
        """Force the circuit breaker CLOSED."""
        self._breaker.reset()
