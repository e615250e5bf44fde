"""
Resilience Wrapper

Two layers around every remote call:
1. retry(): bounded exponential backoff with jitter, never raises
2. CircuitBreaker: stops calling a provider after repeated failures

Circuit states:
- CLOSED: Normal operation, calls flow through
- OPEN: Provider is failing, calls are rejected immediately
- HALF_OPEN: One trial call is allowed to test recovery
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import httpx

from .errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MESSAGE_PATTERNS = (
    "etimedout",
    "econnreset",
    "econnrefused",
    "enotfound",
    "rate limit",
    "too many requests",
    "timeout",
    "timed out",
    "network",
    "connection",
)


def default_retryable(error: BaseException) -> bool:
    """Transport-level failures and rate limiting are worth retrying."""
    if isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)


@dataclass
class RetryOptions:
    """Backoff settings. Delays are in seconds."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    retryable_errors: Callable[[BaseException], bool] = field(default=default_retryable)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt after `attempt` (1-indexed), without jitter."""
        return min(self.base_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)

    def jittered_delay(self, attempt: int) -> float:
        """delay_for() plus up to 10% random jitter."""
        delay = self.delay_for(attempt)
        return delay + delay * 0.1 * random.random()


@dataclass
class RetryResult(Generic[T]):
    """Outcome of retry(). Check `success` before using `result`."""
    success: bool
    attempts: int
    result: Optional[T] = None
    error: Optional[BaseException] = None


async def retry(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryResult[T]:
    """
    Call `operation` until it succeeds, fails with a non-retryable error,
    or runs out of attempts.

    Args:
        operation: Zero-argument coroutine function
        options: Backoff settings (defaults to RetryOptions())
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        RetryResult; never raises for operation failures
    """
    opts = options or RetryOptions()
    last_error: Optional[BaseException] = None
    attempt = 0

    while attempt < opts.max_attempts:
        attempt += 1
        try:
            result = await operation()
            return RetryResult(success=True, attempts=attempt, result=result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            logger.debug(f"Operation failed (attempt {attempt}/{opts.max_attempts}): {e}")

            if attempt >= opts.max_attempts:
                logger.error(f"Operation failed after {opts.max_attempts} attempts: {e}")
                break

            if not opts.retryable_errors(e):
                logger.info(f"Error is not retryable: {e}")
                break

            delay = opts.jittered_delay(attempt)
            logger.info(f"Retrying operation in {delay:.2f}s (attempt {attempt + 1}/{opts.max_attempts})")
            await sleep(delay)

    return RetryResult(success=False, attempts=attempt, error=last_error)


class CircuitState(Enum):
    """States of the circuit breaker."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Failure-counting circuit breaker for one gateway.

    Usage:
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=30.0)
        response = await breaker.execute(lambda: client.post(url, json=payload))

    After `failure_threshold` consecutive failures the breaker opens and
    every call raises CircuitOpenError until `recovery_timeout` seconds have
    passed since the last failure. Then a single trial is let through:
    success closes the breaker, failure re-opens it.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
        name: str = "llm",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_time = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def last_failure_time(self) -> float:
        return self._last_failure_time

    def allow_request(self) -> bool:
        """
        Decide whether a call may proceed, moving OPEN -> HALF_OPEN once the
        recovery timeout has elapsed. A granted half-open request is the trial.
        """
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._transition_to(CircuitState.HALF_OPEN)
                self._trial_in_flight = True
                return True
            return False

        # HALF_OPEN: only the single trial
        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def record_success(self):
        self._failures = 0
        self._trial_in_flight = False
        if self._state != CircuitState.CLOSED:
            self._transition_to(CircuitState.CLOSED)

    def record_failure(self, error: Optional[BaseException] = None):
        self._failures += 1
        self._last_failure_time = self._clock()
        self._trial_in_flight = False

        if error is not None:
            logger.debug(f"Circuit {self.name} failure: {error}")

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
            logger.warning(f"Circuit {self.name}: reopening after half-open trial failure")
        elif self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold:
            self._transition_to(CircuitState.OPEN)
            logger.warning(f"Circuit {self.name}: opened after {self._failures} failures")

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` through the breaker."""
        if not self.allow_request():
            raise CircuitOpenError(context={"circuit": self.name, "failures": self._failures})

        try:
            result = await operation()
        except asyncio.CancelledError:
            self.release_trial()
            raise
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result

    def release_trial(self):
        """Give back a half-open trial that ended with neither success nor failure."""
        self._trial_in_flight = False

    def reset(self):
        """Manually return to CLOSED."""
        self._failures = 0
        self._trial_in_flight = False
        self._state = CircuitState.CLOSED
        logger.info(f"Circuit {self.name}: manually reset")

    def _transition_to(self, new_state: CircuitState):
        old_state = self._state
        self._state = new_state
        logger.info(f"Circuit {self.name}: {old_state.value} -> {new_state.value}")
