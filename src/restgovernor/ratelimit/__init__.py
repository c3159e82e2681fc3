"""Client-side rate limiting: route keys, bucket and global limiters, backoff."""

from restgovernor.ratelimit.backoff import BackoffConfig, BackoffState, compute_backoff_delay
from restgovernor.ratelimit.bucket import BucketLimiter, BucketMetrics, BucketPhase, BucketState
from restgovernor.ratelimit.global_limiter import GlobalLimiter, GlobalLimiterMetrics
from restgovernor.ratelimit.headers import RateLimitHeaders
from restgovernor.ratelimit.registry import BucketRegistry
from restgovernor.ratelimit.route import (
    MAJOR_PARAMETERS,
    TOKEN_DISCRIMINATOR,
    TOKEN_PARAMETERS,
    Route,
    resolve,
)

__all__ = [
    "MAJOR_PARAMETERS",
    "TOKEN_DISCRIMINATOR",
    "TOKEN_PARAMETERS",
    "BackoffConfig",
    "BackoffState",
    "BucketLimiter",
    "BucketMetrics",
    "BucketPhase",
    "BucketRegistry",
    "BucketState",
    "GlobalLimiter",
    "GlobalLimiterMetrics",
    "RateLimitHeaders",
    "Route",
    "compute_backoff_delay",
    "resolve",
]
