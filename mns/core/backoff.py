"""Retry pacing for the receive loop."""
import asyncio
from typing import AsyncIterator


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
) -> AsyncIterator[float]:
    """Yield once per attempt, sleeping the yielded delay before the next one.

    The delay starts at initial_delay and grows by multiplier, capped at max_delay.
    No sleep follows the last attempt.
    """
    delay = min(initial_delay, max_delay)
    for attempt in range(1, max_attempts + 1):
        yield delay
        if attempt == max_attempts:
            return
        await asyncio.sleep(delay)
        delay = min(delay * multiplier, max_delay)
