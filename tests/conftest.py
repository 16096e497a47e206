"""Shared pytest fixtures for curlspec tests.

Provides a scripted in-memory model service, a resilient client wired to it
with no retry delays, and sample markdown documents.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from curlspec.errors import ModelAPIError
from curlspec.intelligence.client import ResilientModelClient
from curlspec.intelligence.resilience import CircuitBreaker, RetryPolicy
from curlspec.models import APISpecification, ExtractionContext

USERS_MARKDOWN = """\
# Users API

Manage the users of the service.

## List users

Returns every user.

```bash
curl -X GET "https://api.example.com/users?page=1" \\
  -H "Authorization: Bearer token123" \\
  -H "Accept: application/json"
```

## Create user

```bash
curl -X POST https://api.example.com/users \\
  -H "Authorization: Bearer token123" \\
  -H "Content-Type: application/json" \\
  -d '{"name": "Ada", "admin": false}'
```

## Delete user

```bash
curl -X DELETE "https://api.example.com/users/{id}" -H "Authorization: Bearer token123"
```
"""

Script = list[Any]


class FakeModelService:
    """Model service returning scripted payloads.

    Each operation has a script: a list of payloads, exceptions to raise,
    or callables receiving the operation input. Items are consumed in
    order and the last item repeats once the script is exhausted. An
    empty script fails every call with ModelAPIError.
    """

    def __init__(
        self,
        document: Script | None = None,
        command: Script | None = None,
        optimize: Script | None = None,
    ) -> None:
        self.scripts: dict[str, Script] = {
            "extract_document": list(document or []),
            "analyze_command": list(command or []),
            "optimize_spec": list(optimize or []),
        }
        self.calls: dict[str, list[Any]] = {name: [] for name in self.scripts}

    def _next(self, operation: str, argument: Any) -> Any:
        self.calls[operation].append(argument)
        script = self.scripts[operation]
        if not script:
            raise ModelAPIError(f"{operation} has no scripted response", status_code=500)
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(argument)
        return item

    async def extract_document(
        self, markdown: str, context: ExtractionContext | None = None
    ) -> Any:
        return self._next("extract_document", markdown)

    async def analyze_command(
        self, raw_curl: str, context: ExtractionContext | None = None
    ) -> Any:
        return self._next("analyze_command", raw_curl)

    async def optimize_spec(
        self, spec: APISpecification, context: str | None = None
    ) -> Any:
        return self._next("optimize_spec", spec)


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_client(
    service: FakeModelService,
    max_attempts: int = 1,
    failure_threshold: int = 5,
    sleep: Callable[[float], Any] | None = None,
) -> ResilientModelClient:
    """Build a resilient client around a fake service with no real waiting."""
    return ResilientModelClient(
        service,
        retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay_ms=0),
        breaker=CircuitBreaker(failure_threshold=failure_threshold),
        call_timeout_seconds=5.0,
        sleep=sleep or SleepRecorder(),
    )


def spec_payload(
    name: str = "List users",
    method: str = "GET",
    url: str = "https://api.example.com/users",
    **fields: Any,
) -> dict[str, Any]:
    """Build a camelCase API specification payload as a model would return it."""
    payload: dict[str, Any] = {"name": name, "method": method, "url": url}
    payload.update(fields)
    return payload


def document_payload(
    apis: list[dict[str, Any]], confidence: float = 0.9, **metadata: Any
) -> dict[str, Any]:
    """Build a whole-document extraction payload."""
    return {
        "apis": apis,
        "metadata": {"name": "Users API", **metadata},
        "confidence": confidence,
        "warnings": [],
    }


@pytest.fixture
def users_markdown() -> str:
    """Markdown document with three curl commands under headings."""
    return USERS_MARKDOWN


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    """Sleep replacement recording delays."""
    return SleepRecorder()
