from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    initial_delay: float,
    retry_on: type[BaseException] | tuple[type[BaseException], ...],
    sleep: Sleep = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Await operation() up to `attempts` times, sleeping initial_delay * 2**n between tries.

    Only exceptions matching retry_on are retried; the last one is re-raised.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    delay = initial_delay
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= attempts:
                logger.warning("Giving up after retries. operation=%s attempts=%d error=%s", description, attempt, e)
                raise
            logger.warning(
                "Attempt failed, retrying. operation=%s attempt=%d/%d delay=%.2fs error=%s",
                description,
                attempt,
                attempts,
                delay,
                e,
            )
            await sleep(delay)
            delay *= 2
    raise AssertionError("unreachable")
