"""Exception hierarchy for curlspec.

All exceptions inherit from :class:`CurlspecError`.

Subclass hierarchy::

    CurlspecError
    +-- DocumentValidationError     (preflight input checks, never retried)
    +-- ModelError                  (external model call failed, retried)
    |   +-- ModelTimeoutError
    |   +-- ModelConnectionError
    |   +-- ModelRateLimitError
    |   +-- ModelAuthenticationError
    |   +-- ModelAPIError
    |   +-- ModelResponseError
    +-- CircuitOpenError            (fast-fail while the breaker is open)

A curl command the tokenizer cannot understand is not an exception: it is
omitted from the results and counted as a parse failure.
"""

from __future__ import annotations


class CurlspecError(Exception):
    """Base exception for all curlspec errors."""

    pass


class DocumentValidationError(CurlspecError):
    """Raised when a markdown document fails preflight validation.

    Raised synchronously before any network call is issued. Callers
    receive it unmodified.
    """

    pass


class ModelError(CurlspecError):
    """Base exception for failed calls to the external model service."""

    pass


class ModelTimeoutError(ModelError):
    """Raised when a model call exceeds its deadline."""

    pass


class ModelConnectionError(ModelError):
    """Raised when the model service cannot be reached."""

    pass


class ModelRateLimitError(ModelError):
    """Raised when the model service rejects a call due to rate limits or quota.

    Attributes:
        retry_after_seconds: Server-suggested wait, when one was provided
    """

    def __init__(self, message: str, retry_after_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ModelAuthenticationError(ModelError):
    """Raised when the model service rejects the configured credentials."""

    pass


class ModelAPIError(ModelError):
    """Raised when the model service answers with an unexpected HTTP status.

    Attributes:
        status_code: HTTP status code of the failed response
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ModelResponseError(ModelError):
    """Raised when a model payload is not JSON or fails schema validation."""

    pass


class CircuitOpenError(CurlspecError):
    """Raised when the circuit breaker rejects a call without attempting it.

    Kept separate from :class:`ModelError` so callers can tell "the service
    is down" apart from "this call failed".

    Attributes:
        operation: Name of the rejected operation
        retry_after_seconds: Seconds until a trial call will be allowed
    """

    def __init__(self, operation: str, retry_after_seconds: float) -> None:
        self.operation = operation
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit breaker is OPEN for {operation}; "
            f"retry in {retry_after_seconds:.1f}s"
        )
