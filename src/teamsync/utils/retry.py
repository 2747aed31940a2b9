"""
Retry logic with exponential backoff for async GitHub calls.

Every remote call goes through with_retry(). After the last attempt the
original exception is re-raised so callers see the real API message.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
BASE_RETRY_DELAY = 1.0


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = MAX_RETRIES
    base_delay: float = BASE_RETRY_DELAY
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (Exception,)


def exponential_backoff(
    attempt: int,
    base_delay: float = BASE_RETRY_DELAY,
    exponential_base: float = 2.0,
) -> float:
    """
    Calculate exponential backoff delay.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Delay before the first retry in seconds
        exponential_base: Base for exponential calculation

    Returns:
        Delay in seconds
    """
    return base_delay * (exponential_base**attempt)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    label: str,
    config: Optional[RetryConfig] = None,
) -> T:
    """
    Await fn(), retrying failures with exponential backoff.

    Args:
        fn: Zero-argument coroutine factory, called once per attempt
        label: Operation name used in log messages
        config: Retry behavior (defaults to 3 retries from 1s)

    Returns:
        The result of the first successful attempt

    Raises:
        The last exception raised by fn once retries are exhausted
    """
    if config is None:
        config = RetryConfig()

    attempts = config.max_retries + 1
    for attempt in range(attempts):
        try:
            return await fn()
        except config.retryable_exceptions as e:
            if attempt >= config.max_retries:
                raise
            delay = exponential_backoff(attempt, config.base_delay, config.exponential_base)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                label,
                attempt + 1,
                attempts,
                delay,
                e,
            )
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise AssertionError("with_retry exhausted without result")
