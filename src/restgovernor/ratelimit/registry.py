"""
Registry of bucket limiters.

The only place BucketLimiter instances are constructed. Lookups that race on
a new key converge on a single limiter because the check-then-insert runs
under a registry-wide lock. That lock only guards the map: it is held for a
dict operation and never across an await, and it is distinct from any
bucket's own lock.

A registry belongs to one Dispatcher; two clients in one process never share
bucket state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from restgovernor.ratelimit.bucket import BucketLimiter
from restgovernor.ratelimit.clock import SleepFn, TimeFn

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


@dataclass
class BucketRegistry:
    """Concurrent map from bucket key to BucketLimiter."""

    _time_fn: TimeFn | None = field(default=None, repr=False)
    _sleep_fn: SleepFn | None = field(default=None, repr=False)

    _limiters: dict[str, BucketLimiter] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def get_or_create(self, key: str) -> BucketLimiter:
        """
        Return the limiter for key, creating it on first sight.

        Concurrent first-time lookups for one key always get the same instance.
        """
        with self._lock:
            limiter = self._limiters.get(key)
            if limiter is None:
                limiter = BucketLimiter(key, _time_fn=self._time_fn, _sleep_fn=self._sleep_fn)
                self._limiters[key] = limiter
                created = True
            else:
                created = False
        if created:
            logger.debug("Created bucket limiter", extra={"bucket_key": key})
        return limiter

    def get(self, key: str) -> BucketLimiter | None:
        with self._lock:
            return self._limiters.get(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._limiters

    def __len__(self) -> int:
        with self._lock:
            return len(self._limiters)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._limiters)

    def __iter__(self) -> Iterator[BucketLimiter]:
        with self._lock:
            limiters = list(self._limiters.values())
        return iter(limiters)

    def prune_idle(self, now_ms: int | None = None) -> int:
        """
        Drop limiters that nobody holds or waits on and whose window has reset.

        Never called automatically. Long-lived processes that touch many
        distinct resources may call it periodically to bound memory.

        Returns:
            Number of limiters removed.
        """
        with self._lock:
            idle = [key for key, limiter in self._limiters.items() if limiter.is_idle(now_ms)]
            for key in idle:
                del self._limiters[key]
        if idle:
            logger.debug("Pruned idle bucket limiters", extra={"count": len(idle)})
        return len(idle)

    def reset(self) -> None:
        """Forget every limiter."""
        with self._lock:
            self._limiters.clear()

    def snapshot(self) -> list[dict[str, str | int | bool | None]]:
        """Status of every limiter, for observability."""
        return [limiter.get_status() for limiter in self]
