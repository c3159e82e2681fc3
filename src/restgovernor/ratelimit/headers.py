"""
Parsing of rate-limit response headers.

Headers consumed:
- X-RateLimit-Limit: requests allowed per window
- X-RateLimit-Remaining: requests left in the current window
- X-RateLimit-Reset-After: seconds (float) until the window resets
- X-RateLimit-Bucket: server-assigned bucket identity
- X-RateLimit-Global: "true" when a 429 is account-wide
- X-RateLimit-Scope: "user", "global" or "shared"
- Retry-After: seconds to wait after a 429 (or 503)

A 429 JSON body may also carry `retry_after` (float seconds) and `global`;
when present they take precedence since they are more precise than the
integer Retry-After header.
"""

from __future__ import annotations

import contextlib
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    with contextlib.suppress(ValueError, OverflowError):
        return max(0, int(float(value)))
    return None


def _parse_seconds_ms(value: Any) -> int | None:
    """Parse a seconds value (str/int/float) into whole milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return int(math.ceil(seconds * 1000))


def _parse_bool(value: str | None) -> bool:
    return value is not None and value.strip().lower() == "true"


@dataclass(frozen=True)
class RateLimitHeaders:
    """
    Rate-limit information extracted from one response.

    All fields are None when the header was absent or unparseable.
    """

    limit: int | None = None
    remaining: int | None = None
    reset_after_ms: int | None = None
    bucket: str | None = None
    retry_after_ms: int | None = None
    is_global: bool = False
    scope: str | None = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        body: Any = None,
    ) -> RateLimitHeaders:
        """
        Build from response headers (case-insensitive) and an optional 429 body.

        Args:
            headers: Response headers.
            body: Decoded JSON body of a 429 response, if any.
        """
        lowered = {key.lower(): value for key, value in headers.items()}

        scope = lowered.get("x-ratelimit-scope")
        is_global = _parse_bool(lowered.get("x-ratelimit-global")) or scope == "global"
        retry_after_ms = _parse_seconds_ms(lowered.get("retry-after"))

        if isinstance(body, dict):
            if body.get("global") is True:
                is_global = True
            body_retry = _parse_seconds_ms(body.get("retry_after"))
            if body_retry is not None:
                retry_after_ms = body_retry

        return cls(
            limit=_parse_int(lowered.get("x-ratelimit-limit")),
            remaining=_parse_int(lowered.get("x-ratelimit-remaining")),
            reset_after_ms=_parse_seconds_ms(lowered.get("x-ratelimit-reset-after")),
            bucket=lowered.get("x-ratelimit-bucket") or None,
            retry_after_ms=retry_after_ms,
            is_global=is_global,
            scope=scope,
        )

    @property
    def has_bucket_info(self) -> bool:
        """True when the response described a bucket window."""
        return (
            self.limit is not None
            or self.remaining is not None
            or self.reset_after_ms is not None
            or self.bucket is not None
        )

    def wait_ms(self) -> int:
        """Best available wait duration for a 429, in milliseconds."""
        if self.retry_after_ms is not None:
            return self.retry_after_ms
        if self.reset_after_ms is not None:
            return self.reset_after_ms
        return 0
