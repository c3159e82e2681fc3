"""
Account-wide rate limiter.

When the server reports a global 429, every bucket must stop, whatever its
own remaining quota. Each dispatch passes through GlobalLimiter.acquire()
before entering its bucket.

locked_until_ms is only read and written under the global lock. The lock is
never held across a sleep, so lock_for() from a request that just hit a
global 429 does not queue behind callers already waiting, and waiters re-check
after waking in case the lock was extended meanwhile.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from restgovernor.errors import GlobalRateLimited
from restgovernor.ratelimit.clock import SleepFn, TimeFn, monotonic_ms, sleep_ms

logger = logging.getLogger(__name__)


@dataclass
class GlobalLimiterMetrics:
    """Counters for the global limiter."""

    activations: int = 0
    waits: int = 0
    total_wait_ms: int = 0
    rejected: int = 0


@dataclass
class GlobalLimiter:
    """Process-wide lock representing the account-level quota."""

    _time_fn: TimeFn | None = field(default=None, repr=False)
    _sleep_fn: SleepFn | None = field(default=None, repr=False)

    metrics: GlobalLimiterMetrics = field(default_factory=GlobalLimiterMetrics, init=False)
    _locked_until_ms: int | None = field(default=None, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def _now_ms(self) -> int:
        if self._time_fn is not None:
            return self._time_fn()
        return monotonic_ms()

    def _remaining_ms(self, now_ms: int) -> int:
        if self._locked_until_ms is None:
            return 0
        return max(0, self._locked_until_ms - now_ms)

    @property
    def locked_until_ms(self) -> int | None:
        return self._locked_until_ms

    def is_locked(self) -> bool:
        """True while the account-wide lock is in the future."""
        return self._remaining_ms(self._now_ms()) > 0

    async def acquire(self, *, wait: bool = True, bucket_key: str | None = None) -> int:
        """
        Wait until the account-wide lock has expired.

        Args:
            wait: If False, raise instead of waiting.
            bucket_key: Bucket of the caller, for error context.

        Returns:
            Milliseconds spent waiting.

        Raises:
            GlobalRateLimited: If locked and wait is False.
        """
        waited_ms = 0
        while True:
            async with self._lock:
                remaining_ms = self._remaining_ms(self._now_ms())
            if remaining_ms <= 0:
                break
            if not wait:
                self.metrics.rejected += 1
                raise GlobalRateLimited(
                    f"Global rate limit active for another {remaining_ms}ms",
                    bucket_key=bucket_key,
                    retry_after_ms=remaining_ms,
                )
            logger.warning(
                "Global rate limit active, waiting",
                extra={"bucket_key": bucket_key, "wait_ms": remaining_ms},
            )
            await sleep_ms(remaining_ms, self._sleep_fn)
            waited_ms += remaining_ms

        if waited_ms > 0:
            self.metrics.waits += 1
            self.metrics.total_wait_ms += waited_ms
        return waited_ms

    async def lock_for(self, duration_ms: int) -> None:
        """
        Block every bucket for duration_ms from now.

        An existing lock that ends later is kept.
        """
        async with self._lock:
            until_ms = self._now_ms() + max(0, duration_ms)
            if self._locked_until_ms is None or until_ms > self._locked_until_ms:
                self._locked_until_ms = until_ms
            self.metrics.activations += 1
        logger.warning("Global rate limit hit", extra={"duration_ms": duration_ms})

    async def reset(self) -> None:
        """Clear the account-wide lock."""
        async with self._lock:
            self._locked_until_ms = None

    def get_status(self) -> dict[str, int | bool]:
        """Get current global limiter status for observability."""
        remaining_ms = self._remaining_ms(self._now_ms())
        return {
            "locked": remaining_ms > 0,
            "remaining_ms": remaining_ms,
            "activations": self.metrics.activations,
        }
