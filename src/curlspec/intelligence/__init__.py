"""Model service subsystem for curlspec.

This module wraps the external language-model service: prompt
construction, the httpx chat completions service, and the resilient
client adding retry, circuit breaking and schema validation.
"""

from curlspec.intelligence.client import (
    HealthReport,
    HealthStatus,
    ResilientModelClient,
    decode_payload,
    extract_json,
)
from curlspec.intelligence.resilience import (
    BreakerStatus,
    CircuitBreaker,
    CircuitBreakerState,
    CircuitStatus,
    RetryPolicy,
    retry_with_backoff,
)
from curlspec.intelligence.service import ChatCompletionModelService, ModelService

__all__ = [
    # Resilience
    "BreakerStatus",
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitStatus",
    "RetryPolicy",
    "retry_with_backoff",
    # Service
    "ChatCompletionModelService",
    "ModelService",
    # Client
    "HealthReport",
    "HealthStatus",
    "ResilientModelClient",
    "decode_payload",
    "extract_json",
]
