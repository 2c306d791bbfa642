"""
Bounded retry with exponential backoff for transient failures.

Used for operations that are safe to repeat: delivering a verification code
and re-reading a balance. Financial writes are never retried here; they rely
on idempotency keys so the *caller* can retry safely.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    retry_on: tuple[type[BaseException], ...],
    attempts: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
) -> T:
    """
    Await ``operation()`` up to ``attempts`` times.

    Between failures the delay doubles, starting at ``base_delay`` and capped
    at ``max_delay``. Only exceptions listed in ``retry_on`` are retried; the
    last one is re-raised once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt == attempts:
                raise
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt, attempts, exc, delay,
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, max_delay)
    raise AssertionError("unreachable")
