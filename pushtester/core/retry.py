"""
Retry with exponential backoff for APNs sends.

APNsClient.send makes exactly one attempt. Callers that want to ride out
rate limiting or a provider outage wrap the send with retry_async and turn
retryable rejections into ServerError via DeliveryOutcome.raise_for_status().
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from pushtester.services.push.exceptions import NetworkError, ServerError

logger = logging.getLogger(__name__)

T = TypeVar('T')

ExceptionPredicate = Callable[[Exception], bool]


class RetryConfig:
    """How many times to try, how long to wait, and which failures qualify."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Sequence[type[Exception]] = (Exception,),
        retry_if: Optional[ExceptionPredicate] = None,
    ):
        """
        Args:
            max_attempts: Total attempts, the first one included
            base_delay: Wait before the second attempt, in seconds
            max_delay: Upper bound on any single wait
            exponential_base: Growth factor between waits
            jitter: Spread waits by up to 25% either way
            retryable_exceptions: Exception types that may be retried
            retry_if: Further filter on a caught exception; False re-raises it
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = tuple(retryable_exceptions)
        self.retry_if = retry_if

    def allows(self, exc: Exception) -> bool:
        """Whether exc is a failure this config retries."""
        if not isinstance(exc, self.retryable_exceptions):
            return False
        return self.retry_if is None or self.retry_if(exc)

    def with_attempts(self, max_attempts: int) -> "RetryConfig":
        """Same policy with a different attempt budget."""
        return RetryConfig(
            max_attempts=max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
            retryable_exceptions=self.retryable_exceptions,
            retry_if=self.retry_if,
        )


def _server_error_is_retryable(exc: Exception) -> bool:
    # NetworkError always qualifies; ServerError only for transient reasons
    return not isinstance(exc, ServerError) or exc.is_retryable


RETRY_APNS_SEND = RetryConfig(
    max_attempts=3,
    base_delay=2.0,
    max_delay=30.0,
    retryable_exceptions=(NetworkError, ServerError),
    retry_if=_server_error_is_retryable,
)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Wait before the retry that follows zero-based attempt number `attempt`.

    base_delay * exponential_base ** attempt, capped at max_delay, then
    jittered by up to 25% when config.jitter is set. Never negative.
    """
    delay = min(config.base_delay * config.exponential_base ** attempt, config.max_delay)
    if config.jitter:
        spread = delay * 0.25
        delay += random.uniform(-spread, spread)
    return max(0.0, delay)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    config: RetryConfig = RETRY_APNS_SEND,
    operation_name: Optional[str] = None,
    **kwargs,
) -> T:
    """
    Await func(*args, **kwargs) until it succeeds or the policy gives up.

    Args:
        func: Coroutine function to call
        config: Retry policy (default: RETRY_APNS_SEND)
        operation_name: Label for log records (default: func.__name__)

    Returns:
        The first successful result

    Raises:
        The first exception the policy does not allow, or the exception
        from the final attempt

    Example:
        async def deliver():
            return (await client.send(request, credentials)).raise_for_status()

        outcome = await retry_async(deliver, operation_name="apns_send")
    """
    name = operation_name or getattr(func, '__name__', 'operation')
    attempt = 0

    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not config.allows(e):
                raise

            attempt += 1
            if attempt >= config.max_attempts:
                logger.error(
                    f"{name} gave up after {attempt} attempts: {e}",
                    extra={
                        "event_type": "retry_exhausted",
                        "operation": name,
                        "attempts": attempt,
                        "error_type": type(e).__name__,
                    }
                )
                raise

            delay = calculate_delay(attempt - 1, config)
            logger.warning(
                f"{name} attempt {attempt}/{config.max_attempts} failed, "
                f"next try in {delay:.1f}s: {e}",
                extra={
                    "event_type": "retry_attempt",
                    "operation": name,
                    "attempt": attempt,
                    "max_attempts": config.max_attempts,
                    "delay_seconds": delay,
                    "error_type": type(e).__name__,
                }
            )
            await asyncio.sleep(delay)
