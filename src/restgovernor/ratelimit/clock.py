"""Time sources shared by the limiters.

All limiter timestamps are integer milliseconds on a monotonic clock. Each
component accepts an injected time function and sleep coroutine so tests can
drive time deterministically.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

TimeFn = Callable[[], int]
SleepFn = Callable[[float], Awaitable[None]]


def monotonic_ms() -> int:
    """Current monotonic time in milliseconds."""
    return int(time.monotonic() * 1000)


async def sleep_ms(delay_ms: int, sleep_fn: SleepFn | None = None) -> None:
    """Sleep for delay_ms using the injected sleep function or asyncio.sleep."""
    if delay_ms <= 0:
        return
    if sleep_fn is not None:
        await sleep_fn(delay_ms / 1000)
    else:
        await asyncio.sleep(delay_ms / 1000)
