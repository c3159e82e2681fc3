"""
Per-bucket rate limiter.

A BucketLimiter serializes every request that shares one bucket key and
throttles pre-emptively: once the server reports no remaining quota, the next
acquirer sleeps until the window resets instead of sending a request that is
known to be rejected.

States:
- UNINITIALIZED: no response observed yet, treated as READY
- READY: quota left, or the reset time has passed
- LOCKED: quota exhausted until reset_at_ms

Waiting callers queue on an asyncio.Lock, which wakes waiters in FIFO order.
The pre-emptive sleep happens while the lock is held; it suspends only the
waiting task, and everything queued behind it would have to wait anyway.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from restgovernor.ratelimit.clock import SleepFn, TimeFn, monotonic_ms, sleep_ms

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from restgovernor.ratelimit.headers import RateLimitHeaders

logger = logging.getLogger(__name__)


class BucketPhase(str, Enum):
    """Observable limiter state."""

    UNINITIALIZED = "UNINITIALIZED"
    READY = "READY"
    LOCKED = "LOCKED"


@dataclass
class BucketState:
    """
    Server-reported quota for one bucket key.

    Attributes:
        key: Local bucket key.
        remaining: Requests left in the window (None until first response).
        limit: Window size (None until first response).
        reset_at_ms: Monotonic time the window resets.
        server_bucket_id: Bucket identity last reported by the server.
    """

    key: str
    remaining: int | None = None
    limit: int | None = None
    reset_at_ms: int = 0
    server_bucket_id: str | None = None


@dataclass
class BucketMetrics:
    """Counters for one limiter."""

    acquisitions: int = 0
    preemptive_waits: int = 0
    total_wait_ms: int = 0
    rate_limited: int = 0
    reassignments: int = 0


@dataclass
class BucketLimiter:
    """
    Mutual exclusion plus quota tracking for one bucket key.

    Only BucketRegistry creates limiters. State is mutated only through
    update(), and only while the limiter is held.

    Usage:
        async with limiter.permit():
            response = await transport.perform(...)
            limiter.update(RateLimitHeaders.from_headers(response.headers))
    """

    key: str
    _time_fn: TimeFn | None = field(default=None, repr=False)
    _sleep_fn: SleepFn | None = field(default=None, repr=False)

    state: BucketState = field(init=False)
    metrics: BucketMetrics = field(default_factory=BucketMetrics, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)
    _queued: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        self.state = BucketState(key=self.key)

    def _now_ms(self) -> int:
        if self._time_fn is not None:
            return self._time_fn()
        return monotonic_ms()

    @property
    def phase(self) -> BucketPhase:
        if self.state.remaining is None:
            return BucketPhase.UNINITIALIZED
        if self.wait_time_ms() > 0:
            return BucketPhase.LOCKED
        return BucketPhase.READY

    @property
    def locked(self) -> bool:
        """True while a caller holds the bucket."""
        return self._lock.locked()

    @property
    def queued(self) -> int:
        """Number of callers waiting to enter."""
        return self._queued

    def wait_time_ms(self, now_ms: int | None = None) -> int:
        """
        Time until the bucket may send again.

        Returns:
            Milliseconds to wait (0 if quota remains or the window has reset).
        """
        if self.state.remaining is None or self.state.remaining > 0:
            return 0
        now = now_ms if now_ms is not None else self._now_ms()
        return max(0, self.state.reset_at_ms - now)

    async def acquire(self) -> int:
        """
        Enter the bucket, waiting for quota if it is exhausted.

        A caller cancelled while queued never holds the bucket. A caller
        cancelled during the pre-emptive wait releases it before the
        cancellation propagates.

        Returns:
            Milliseconds spent in the pre-emptive wait (excludes queueing).
        """
        self._queued += 1
        try:
            await self._lock.acquire()
        finally:
            self._queued -= 1

        waited_ms = 0
        try:
            wait_ms = self.wait_time_ms()
            while wait_ms > 0:
                logger.warning(
                    "Bucket exhausted, waiting for reset",
                    extra={"bucket_key": self.key, "wait_ms": wait_ms},
                )
                await sleep_ms(wait_ms, self._sleep_fn)
                waited_ms += wait_ms
                wait_ms = self.wait_time_ms()
        except BaseException:
            self._lock.release()
            raise

        self.metrics.acquisitions += 1
        if waited_ms > 0:
            self.metrics.preemptive_waits += 1
            self.metrics.total_wait_ms += waited_ms
        return waited_ms

    def update(self, headers: RateLimitHeaders, *, status: int = 200) -> None:
        """
        Apply rate-limit headers from a response.

        Args:
            headers: Parsed rate-limit headers.
            status: HTTP status of the response. A bucket-scoped 429 marks the
                bucket exhausted for at least the server's wait duration.

        Raises:
            RuntimeError: If called without holding the bucket.
        """
        if not self._lock.locked():
            raise RuntimeError(f"update() on bucket {self.key} requires acquire() first")

        now_ms = self._now_ms()
        state = self.state

        if headers.limit is not None:
            state.limit = headers.limit
        if headers.remaining is not None:
            state.remaining = headers.remaining
        if headers.reset_after_ms is not None:
            state.reset_at_ms = now_ms + headers.reset_after_ms

        if headers.bucket is not None:
            if state.server_bucket_id is not None and headers.bucket != state.server_bucket_id:
                # Local key stays authoritative; limiters are never merged.
                self.metrics.reassignments += 1
                logger.info(
                    "Server reassigned bucket",
                    extra={
                        "bucket_key": self.key,
                        "previous_bucket": state.server_bucket_id,
                        "server_bucket": headers.bucket,
                    },
                )
            state.server_bucket_id = headers.bucket

        if status == 429 and not headers.is_global:
            self.metrics.rate_limited += 1
            state.remaining = 0
            state.reset_at_ms = max(state.reset_at_ms, now_ms + headers.wait_ms())

    def release(self) -> None:
        """Leave the bucket, waking the next queued caller."""
        self._lock.release()

    @contextlib.asynccontextmanager
    async def permit(self) -> AsyncIterator[BucketLimiter]:
        """Hold the bucket for the duration of the block; always releases."""
        await self.acquire()
        try:
            yield self
        finally:
            self.release()

    def is_idle(self, now_ms: int | None = None) -> bool:
        """True when nobody holds or waits on the bucket and its window has reset."""
        if self._lock.locked() or self._queued > 0:
            return False
        now = now_ms if now_ms is not None else self._now_ms()
        return now >= self.state.reset_at_ms

    def get_status(self) -> dict[str, str | int | bool | None]:
        """Get current limiter status for observability."""
        return {
            "key": self.key,
            "phase": self.phase.value,
            "remaining": self.state.remaining,
            "limit": self.state.limit,
            "wait_ms": self.wait_time_ms(),
            "server_bucket": self.state.server_bucket_id,
            "locked": self.locked,
            "queued": self._queued,
        }
