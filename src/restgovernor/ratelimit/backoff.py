"""
Capped exponential backoff for transient failures.

Used by the dispatcher for 5xx responses and transport failures only; 429
responses are governed by the bucket and global limiters instead, which
follow the server's own wait durations.

- Exponential growth from base_delay_ms by multiplier per attempt
- Randomized jitter so concurrent callers do not retry in lockstep
- Hard cap at max_delay_ms
- A server-provided Retry-After always wins over a shorter computed delay
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass
class BackoffConfig:
    """Configuration for exponential backoff.

    Attributes:
        base_delay_ms: Delay before the first retry.
        max_delay_ms: Upper bound for any computed delay.
        multiplier: Growth factor applied per consecutive failure.
        jitter_factor: 0.25 = ±25% jitter around the computed delay.
        max_retries: Retries allowed after the first failure.
    """

    base_delay_ms: int = 500
    max_delay_ms: int = 30000
    multiplier: float = 2.0
    jitter_factor: float = 0.25
    max_retries: int = 3

    def __post_init__(self) -> None:
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= base_delay_ms "
                f"({self.base_delay_ms})"
            )
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")
        if not 0.0 <= self.jitter_factor < 1.0:
            raise ValueError(f"jitter_factor must be in [0, 1), got {self.jitter_factor}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")


@dataclass
class BackoffState:
    """Consecutive failure counter for one kind of transient error."""

    attempt: int = 0

    def reset(self) -> None:
        """Reset after a request that got past this failure kind."""
        self.attempt = 0

    def record_error(self) -> None:
        """Record a failure occurrence."""
        self.attempt += 1

    def exhausted(self, config: BackoffConfig) -> bool:
        """True once more failures were seen than retries are allowed."""
        return self.attempt > config.max_retries


def compute_backoff_delay(
    config: BackoffConfig,
    state: BackoffState,
    retry_after_ms: int | None = None,
    *,
    rng: random.Random | None = None,
) -> int:
    """
    Compute the delay before the next retry.

    Args:
        config: Backoff configuration.
        state: Failure counter; attempt 0 means no failure yet.
        retry_after_ms: Server-provided delay (Retry-After on 503), if any.
        rng: Optional seeded Random instance for deterministic jitter.

    Returns:
        Delay in milliseconds.
    """
    if state.attempt == 0:
        return 0

    delay = config.base_delay_ms * (config.multiplier ** (state.attempt - 1))

    jitter_min = 1.0 - config.jitter_factor
    jitter_max = 1.0 + config.jitter_factor
    source = rng if rng is not None else random
    delay *= source.uniform(jitter_min, jitter_max)

    delay = min(delay, config.max_delay_ms)

    if retry_after_ms is not None and retry_after_ms > 0:
        delay = max(delay, retry_after_ms)

    return int(delay)
