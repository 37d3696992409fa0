"""Retry utilities with exponential backoff.

The library never retries on its own. These helpers are for callers (the CLI
among them) that want to re-run a whole dial + command batch after a
connection failure or a session timeout.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_INITIAL_INTERVAL = 1.0
DEFAULT_MAX_INTERVAL = 30.0
DEFAULT_MULTIPLIER = 2.0


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: Optional[int] = 3,
    max_elapsed_time: Optional[float] = None,
    initial_interval: float = DEFAULT_INITIAL_INTERVAL,
    max_interval: float = DEFAULT_MAX_INTERVAL,
    multiplier: float = DEFAULT_MULTIPLIER,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
) -> T:
    """Execute an async function with exponential backoff retry.

    Args:
        func: Async function to execute (no arguments)
        max_attempts: Maximum number of attempts (None for unlimited)
        max_elapsed_time: Maximum total time in seconds (None for unlimited)
        initial_interval: Initial wait between retries
        max_interval: Maximum wait between retries
        multiplier: Backoff multiplier
        retryable_exceptions: Tuple of exception types to retry on
        on_retry: Optional callback(exception, attempt, next_interval)

    Returns:
        Result of the function

    Raises:
        The last exception if all retries fail
    """
    start_time = time.monotonic()
    attempt = 0
    interval = initial_interval

    while True:
        attempt += 1
        try:
            return await func()
        except retryable_exceptions as e:
            if max_attempts is not None and attempt >= max_attempts:
                raise

            elapsed = time.monotonic() - start_time
            remaining_time = (
                max_elapsed_time - elapsed
                if max_elapsed_time is not None
                else float("inf")
            )
            if remaining_time <= 0:
                raise

            wait_time = min(interval, max_interval, remaining_time)

            if on_retry:
                on_retry(e, attempt, wait_time)
            else:
                logger.debug(
                    f"Attempt {attempt} failed: {e}. Retrying in {wait_time:.1f}s"
                )

            await asyncio.sleep(wait_time)
            interval = min(interval * multiplier, max_interval)
