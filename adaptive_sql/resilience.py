"""
Resilience & Reliability
=========================
Circuit breaker and retry strategy for provider calls.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, Union

import openai
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = logging.getLogger("adaptive_sql.resilience")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
)


class CircuitBreakerOpen(Exception):
    """Exception raised when circuit breaker is open."""
    pass


class CircuitBreaker:
    """Circuit breaker for async provider calls.

    Opens after ``failure_threshold`` consecutive failures. Once
    ``recovery_timeout`` seconds have passed, the next caller becomes the
    single trial call (half-open); other callers are rejected until the
    trial settles. A successful trial closes the breaker and a failed one
    reopens it.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        expected_exception: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = Exception,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = self.CLOSED

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await *func* with circuit breaker protection."""
        if self.state == self.HALF_OPEN:
            raise CircuitBreakerOpen("Circuit breaker HALF_OPEN. Trial call in progress.")
        if self.state == self.OPEN:
            if not self._should_attempt_reset():
                raise CircuitBreakerOpen("Circuit breaker OPEN. Provider unavailable.")
            self.state = self.HALF_OPEN
            logger.info("Circuit breaker HALF_OPEN, allowing a trial call")

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        except BaseException:
            # A trial that ends without a verdict leaves room for another trial.
            if self.state == self.HALF_OPEN:
                self.state = self.OPEN
            raise
        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return (time.monotonic() - self.last_failure_time) >= self.recovery_timeout

    def _on_success(self):
        self.failure_count = 0
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker CLOSED (recovered)")
        self.state = self.CLOSED

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.failure_count >= self.failure_threshold or self.state == self.HALF_OPEN:
            if self.state != self.OPEN:
                logger.error(
                    "Circuit breaker OPEN after %d failures", self.failure_count
                )
            self.state = self.OPEN


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    **kwargs,
) -> Any:
    """Await *func*, retrying transient failures with jittered backoff.

    Args:
        func: Coroutine function to call.
        max_retries: Retries after the first attempt.
        base_delay: Initial wait in seconds (also the jitter ceiling).
        backoff_factor: Exponential base for the wait.
        retry_on: Exception types worth retrying. Anything else is
            raised immediately.

    Returns:
        Whatever *func* returns.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential_jitter(
            multiplier=base_delay, exp_base=backoff_factor, max=60, jitter=base_delay
        ),
        retry=retry_if_exception_type(retry_on),
        reraise=True,
        before_sleep=lambda rs: logger.warning(
            "Retry attempt %d for %s after %s",
            rs.attempt_number, getattr(func, "__name__", "call"), rs.outcome.exception(),
        ),
    )
    async for attempt in retrying:
        with attempt:
            return await func(*args, **kwargs)
