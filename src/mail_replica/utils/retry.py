"""Retry helpers with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


def backoff_delay(
    attempt: int,
    *,
    base_delay_s: float,
    max_delay_s: float,
    jitter_s: float,
) -> float:
    """Return the sleep before retry number ``attempt`` (1-based).

    Args:
        attempt: Attempt that just failed.
        base_delay_s: Base delay in seconds.
        max_delay_s: Maximum delay between attempts.
        jitter_s: Upper bound of random jitter added to the delay.

    Returns:
        Delay in seconds.
    """
    delay = min(max_delay_s, base_delay_s * (2 ** (attempt - 1)))
    return delay + random.uniform(0, jitter_s)


async def retry_async[T](
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay_s: float = 0.5,
    max_delay_s: float = 20.0,
    jitter_s: float = 0.25,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Retry an async function with exponential backoff.

    Args:
        fn: Async callable to execute.
        attempts: Number of attempts before giving up.
        base_delay_s: Base delay in seconds.
        max_delay_s: Maximum delay between attempts.
        jitter_s: Random jitter added to delay.
        retry_on: Exception types to retry on. Anything else propagates at once.

    Returns:
        Result of the callable.

    Raises:
        BaseException: The last exception if retries are exhausted.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            delay = backoff_delay(
                attempt,
                base_delay_s=base_delay_s,
                max_delay_s=max_delay_s,
                jitter_s=jitter_s,
            )
            logger.debug(
                "Retrying after %r (attempt %s/%s, sleeping %.2fs)",
                exc,
                attempt,
                attempts,
                delay,
            )
            await asyncio.sleep(delay)
    raise ValueError("attempts must be >= 1")


async def retry_to_thread[T](
    fn: Callable[[], T],
    *,
    attempts: int,
    base_delay_s: float = 0.5,
    max_delay_s: float = 20.0,
    jitter_s: float = 0.25,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Retry a blocking function in a worker thread with exponential backoff.

    Args:
        fn: Sync callable to execute in a thread.
        attempts: Number of attempts before giving up.
        base_delay_s: Base delay in seconds.
        max_delay_s: Maximum delay between attempts.
        jitter_s: Random jitter added to delay.
        retry_on: Exception types to retry on.

    Returns:
        Result of the callable.
    """

    async def _call() -> T:
        """Run the provided function in a thread."""
        return await asyncio.to_thread(fn)

    return await retry_async(
        _call,
        attempts=attempts,
        base_delay_s=base_delay_s,
        max_delay_s=max_delay_s,
        jitter_s=jitter_s,
        retry_on=retry_on,
    )
