"""Bounded retry policy for webhook deliveries."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from loguru import logger

from src.core.config import WebhookConfig
from src.core.exceptions import DeliveryError


def is_retryable_delivery_error(error: BaseException) -> bool:
    """Whether a failed attempt may succeed if repeated (network error or 5xx)."""
    return isinstance(error, DeliveryError) and error.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a delivery is attempted.

    Attempts run strictly one after another. The delay before attempt ``n + 1``
    is ``base_delay * 2 ** (n - 1)`` seconds, capped at ``max_delay``.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any single delay, in seconds.
        is_retryable: Decides whether a raised error warrants another attempt.
        sleep: Awaitable sleep, replaceable in tests.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    is_retryable: Callable[[BaseException], bool] = is_retryable_delivery_error
    sleep: Callable[[float], Awaitable[None]] = field(
        default=asyncio.sleep, repr=False
    )

    def __post_init__(self) -> None:
        """Reject policies that could never attempt a delivery."""
        if self.max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        if self.base_delay < 0 or self.max_delay < 0:
            msg = "Retry delays must not be negative"
            raise ValueError(msg)

    @classmethod
    def from_config(cls, config: WebhookConfig) -> "RetryPolicy":
        """Build the policy described by the webhook settings."""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.retry_base_delay_seconds,
            max_delay=config.retry_max_delay_seconds,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    async def run[T](self, operation: Callable[[int], Awaitable[T]]) -> T:
        """Await ``operation(attempt)`` until it succeeds or the policy gives up.

        Args:
            operation: Called with the 1-based attempt number.

        Returns:
            T: The result of the first successful attempt.

        Raises:
            BaseException: The last error, once it is not retryable or
                ``max_attempts`` is reached.
        """
        attempt = 1
        while True:
            try:
                return await operation(attempt)
            except Exception as e:
                if attempt >= self.max_attempts or not self.is_retryable(e):
                    raise
                wait = self.delay(attempt)
                logger.debug(
                    "Attempt {} failed, retrying in {:.2f}s: {}",
                    attempt,
                    wait,
                    e,
                    attempt=attempt,
                )
                await self.sleep(wait)
                attempt += 1
