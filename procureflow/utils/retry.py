from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from ..constants import DEFAULT_RETRY_BASE_DELAY

T = TypeVar("T")

logger = logging.getLogger(__name__)


def compute_backoff(
    attempt: int, base_delay: float = DEFAULT_RETRY_BASE_DELAY, jitter: float = 0.5
) -> float:
    """Compute exponential backoff with proportional jitter."""
    delay = base_delay * (2 ** attempt)
    return delay + random.uniform(0, delay * jitter)


async def schedule_retry(attempt: int, base_delay: float = DEFAULT_RETRY_BASE_DELAY) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, base_delay)
    if delay > 0:
        await asyncio.sleep(delay)


async def retry_on(
    operation: Callable[[], Awaitable[T]],
    exceptions: Tuple[Type[BaseException], ...],
    attempts: int = 1,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
) -> T:
    """Run ``operation``, re-running it up to ``attempts`` more times on ``exceptions``.

    The last failure propagates unchanged.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except exceptions as exc:
            if attempt >= attempts:
                raise
            logger.debug(f"Retrying after {type(exc).__name__}: {exc}")
            await schedule_retry(attempt, base_delay)
            attempt += 1
