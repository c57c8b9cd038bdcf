"""Exponential backoff for flaky external calls.

Used by the search adapter; the OpenAI client uses the ``backoff`` decorator instead.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from circadian.core.logging import get_logger

logger = get_logger(__name__)


def _default_retryable() -> tuple[type[Exception], ...]:
    return (httpx.TransportError, httpx.HTTPStatusError)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=_default_retryable)


def compute_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    delay = min(config.backoff_base * (2**attempt), config.backoff_max)
    if config.jitter:
        delay *= 0.5 + random.random()
    return delay


async def retry_with_backoff[T](
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Await ``fn()`` until it succeeds or attempts run out.

    Only ``config.retryable_exceptions`` are retried; anything else propagates
    immediately. The last retryable exception is re-raised once attempts are
    exhausted.

    Example:
        ```python
        results = await retry_with_backoff(
            lambda: client.get(url, params=params),
            config=RetryConfig(max_attempts=2),
            operation_name="search",
        )
        ```
    """
    config = config or RetryConfig()
    if config.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        try:
            return await fn()
        except config.retryable_exceptions as e:
            attempt += 1
            if attempt >= config.max_attempts:
                logger.bind(operation=operation_name, attempts=attempt, error=str(e)).error(
                    "retry_exhausted"
                )
                raise

            delay = compute_delay(attempt - 1, config)
            logger.bind(
                operation=operation_name,
                attempt=attempt,
                delay_seconds=round(delay, 2),
                error=str(e),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)
