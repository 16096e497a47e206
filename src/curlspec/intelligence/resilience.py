"""Retry with linear backoff and a circuit breaker for model calls.

Every call to the external model service passes through two layers,
innermost first:

- Retry: up to ``max_attempts`` attempts, waiting ``base_delay_ms * n``
  after failed attempt ``n``. Only :class:`ModelError` is retried and the
  final failure is re-raised unchanged.
- Circuit breaker: CLOSED -> OPEN after ``failure_threshold`` consecutive
  failures. While OPEN, calls fail fast with :class:`CircuitOpenError`
  until ``reset_timeout_ms`` has elapsed since the last failure; then the
  breaker moves to HALF_OPEN and admits exactly one trial call.

Breaker state is owned by one :class:`CircuitBreaker` instance and all
mutations are serialized with an asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

import structlog
from pydantic import BaseModel, Field

from curlspec.errors import CircuitOpenError, ModelError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class CircuitStatus(str, Enum):
    """Circuit breaker status.

    Values:
        CLOSED: Calls pass through
        OPEN: Calls fail fast until the reset timeout elapses
        HALF_OPEN: One trial call decides between CLOSED and OPEN
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# reset() may force CLOSED from any status; it bypasses this table.
CIRCUIT_TRANSITIONS: dict[CircuitStatus, set[CircuitStatus]] = {
    CircuitStatus.CLOSED: {CircuitStatus.OPEN},
    CircuitStatus.OPEN: {CircuitStatus.HALF_OPEN},
    CircuitStatus.HALF_OPEN: {CircuitStatus.CLOSED, CircuitStatus.OPEN},
}


class RetryPolicy(BaseModel):
    """Linear backoff retry policy.

    Attributes:
        max_attempts: Attempts per call, including the first
        base_delay_ms: Delay base; failed attempt n waits base * n
    """

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_ms: int = Field(default=1000, ge=0, le=60000)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        return self.base_delay_ms * attempt / 1000.0


class CircuitBreakerState(BaseModel):
    """Snapshot of a circuit breaker.

    Attributes:
        status: Current status
        consecutive_failures: Failures since the last success
        last_failure_time: Clock reading of the last failure
        failure_threshold: Failures that open the circuit
        reset_timeout_ms: Time the circuit stays open before a trial call
    """

    status: CircuitStatus = CircuitStatus.CLOSED
    consecutive_failures: int = Field(default=0, ge=0)
    last_failure_time: float | None = None
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_ms: int = Field(default=60000, ge=0)


class BreakerStatus(BaseModel):
    """Breaker introspection for health reporting."""

    status: CircuitStatus
    consecutive_failures: int
    retry_after_seconds: float = 0.0


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation_name: str,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run an async operation, retrying model failures with linear backoff.

    No delay precedes the first attempt.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Retry policy
        operation_name: Name used in log events
        sleep: Async sleep function (injectable for tests)

    Returns:
        The operation's result

    Raises:
        ModelError: The last failure, once all attempts are exhausted
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except ModelError as e:
            if attempt >= policy.max_attempts:
                logger.warning(
                    "retries_exhausted",
                    operation=operation_name,
                    attempts=attempt,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

            delay = policy.delay_for(attempt)
            logger.info(
                "retry_scheduled",
                operation=operation_name,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=delay,
                error_type=type(e).__name__,
                error=str(e),
            )
            await sleep(delay)
            attempt += 1


class CircuitBreaker:
    """Circuit breaker guarding calls to one external dependency.

    Safe to share between concurrent tasks on one event loop: admission
    and outcome recording happen under an asyncio.Lock, and while
    HALF_OPEN only a single trial call is admitted.

    Args:
        failure_threshold: Consecutive failures that open the circuit
        reset_timeout_ms: Time the circuit stays open before a trial call
        clock: Monotonic clock in seconds (injectable for tests)
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60000,
        clock: Clock = time.monotonic,
    ) -> None:
        self._state = CircuitBreakerState(
            failure_threshold=failure_threshold,
            reset_timeout_ms=reset_timeout_ms,
        )
        self._clock = clock
        self._lock = asyncio.Lock()
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitBreakerState:
        """Copy of the current breaker state."""
        return self._state.model_copy()

    def _remaining_open_seconds(self) -> float:
        if self._state.last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self._state.last_failure_time
        return max(0.0, self._state.reset_timeout_ms / 1000.0 - elapsed)

    def _transition(self, target: CircuitStatus) -> None:
        current = self._state.status
        if target not in CIRCUIT_TRANSITIONS[current]:
            logger.error(
                "invalid_circuit_transition",
                current=current.value,
                target=target.value,
            )
            return
        self._state.status = target
        logger.info(
            "circuit_state_changed",
            previous=current.value,
            status=target.value,
            consecutive_failures=self._state.consecutive_failures,
        )

    async def _admit(self, operation: str) -> bool:
        """Admit or reject a call.

        Returns:
            True when the admitted call is the HALF_OPEN trial

        Raises:
            CircuitOpenError: When the call is rejected
        """
        async with self._lock:
            if self._state.status is CircuitStatus.OPEN:
                remaining = self._remaining_open_seconds()
                if remaining > 0:
                    logger.debug(
                        "circuit_rejected_call",
                        operation=operation,
                        retry_after_seconds=remaining,
                    )
                    raise CircuitOpenError(operation, remaining)
                self._transition(CircuitStatus.HALF_OPEN)

            if self._state.status is CircuitStatus.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(operation, 0.0)
                self._trial_in_flight = True
                logger.info("circuit_trial_call", operation=operation)
                return True

            return False

    async def _on_success(self, operation: str, trial: bool) -> None:
        async with self._lock:
            if trial:
                self._trial_in_flight = False
            if trial and self._state.status is CircuitStatus.HALF_OPEN:
                self._state.consecutive_failures = 0
                self._transition(CircuitStatus.CLOSED)
                logger.info("circuit_closed", operation=operation)
            elif self._state.status is CircuitStatus.CLOSED:
                self._state.consecutive_failures = 0

    async def _on_failure(self, operation: str, error: Exception, trial: bool) -> None:
        async with self._lock:
            if trial:
                self._trial_in_flight = False
            self._state.consecutive_failures += 1
            self._state.last_failure_time = self._clock()

            status = self._state.status
            if status is CircuitStatus.HALF_OPEN or (
                status is CircuitStatus.CLOSED
                and self._state.consecutive_failures >= self._state.failure_threshold
            ):
                self._transition(CircuitStatus.OPEN)
                logger.warning(
                    "circuit_opened",
                    operation=operation,
                    consecutive_failures=self._state.consecutive_failures,
                    reset_timeout_ms=self._state.reset_timeout_ms,
                    error_type=type(error).__name__,
                )

    async def call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run func through the breaker.

        Args:
            operation: Operation name for errors and log events
            func: Zero-argument coroutine factory (typically the retry layer)

        Returns:
            func's result

        Raises:
            CircuitOpenError: When the circuit rejects the call; func is not invoked
        """
        trial = await self._admit(operation)
        try:
            result = await func()
        except Exception as e:
            await self._on_failure(operation, e, trial)
            raise
        except BaseException:
            # A cancelled trial hands the probe to the next caller
            if trial:
                self._trial_in_flight = False
            raise
        await self._on_success(operation, trial)
        return result

    def status(self) -> BreakerStatus:
        """Report status, failure count and time until a trial call."""
        retry_after = 0.0
        if self._state.status is CircuitStatus.OPEN:
            retry_after = self._remaining_open_seconds()
        return BreakerStatus(
            status=self._state.status,
            consecutive_failures=self._state.consecutive_failures,
            retry_after_seconds=retry_after,
        )

    def reset(self) -> None:
        """Force the breaker CLOSED and clear its failure history."""
        self._state.status = CircuitStatus.CLOSED
        self._state.consecutive_failures = 0
        self._state.last_failure_time = None
        self._trial_in_flight = False
        logger.info("circuit_reset")
