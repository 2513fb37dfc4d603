# parkbot/utils/retry.py
"""
Bounded async retry helper.

Used where the read path may briefly lag a concurrent write (account linking).
The wait is asyncio.sleep, so the event loop keeps serving other webhooks.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.05      # seconds
    multiplier: float = 2.0
    max_delay: float = 0.5

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


async def retry_until_found(
    fetch: Callable[[], Awaitable[Optional[T]]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_miss: Callable[[int], None] = None,
) -> Optional[T]:
    """
    Call `fetch` until it returns something other than None, at most
    `policy.max_attempts` times. Returns None when every attempt missed.
    """
    for attempt in range(1, policy.max_attempts + 1):
        result = await fetch()
        if result is not None:
            return result
        if on_miss:
            on_miss(attempt)
        if attempt < policy.max_attempts:
            await sleep(policy.delay_for(attempt))
    return None
