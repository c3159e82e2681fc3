"""Deterministic clock and scripted transport for governor tests.

FakeClock stands in for the monotonic clock and asyncio.sleep: sleeping
advances time instantly, so multi-second rate-limit windows run in
microseconds while still yielding to the event loop.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import orjson

from restgovernor.client.types import TransportResponse


class FakeClock:
    """Manually driven millisecond clock with an instant sleep."""

    def __init__(self, start_ms: int = 0) -> None:
        self.now_ms = start_ms
        self.sleeps: list[float] = []

    def time_fn(self) -> int:
        return self.now_ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now_ms += round(seconds * 1000)
        await asyncio.sleep(0)

    def advance(self, ms: int) -> None:
        self.now_ms += ms


def make_response(
    status: int = 200,
    json_body: Any = None,
    headers: Mapping[str, str] | None = None,
) -> TransportResponse:
    """Build a TransportResponse with a JSON body."""
    body = b"" if json_body is None else orjson.dumps(json_body)
    return TransportResponse(
        status=status,
        headers=dict(headers or {}),
        body=body,
        content_type="application/json" if json_body is not None else None,
    )


def ratelimit_headers(
    *,
    remaining: int,
    limit: int = 5,
    reset_after: float = 1.0,
    bucket: str = "abcd1234",
) -> dict[str, str]:
    """Headers the server sends with every bucketed response."""
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset-After": str(reset_after),
        "X-RateLimit-Bucket": bucket,
    }


def too_many_requests(retry_after: float, *, is_global: bool = False) -> TransportResponse:
    """A 429 response as the server sends it."""
    headers = {"Retry-After": str(int(retry_after) or 1)}
    if is_global:
        headers["X-RateLimit-Global"] = "true"
        headers["X-RateLimit-Scope"] = "global"
    else:
        headers.update(ratelimit_headers(remaining=0, reset_after=retry_after))
        headers["X-RateLimit-Scope"] = "user"
    return make_response(
        429,
        {"message": "You are being rate limited.", "retry_after": retry_after, "global": is_global},
        headers,
    )


Handler = Callable[[str, str, Mapping[str, str], "bytes | None"], Awaitable[TransportResponse]]


@dataclass
class RecordedCall:
    method: str
    url: str
    headers: dict[str, str]
    body: bytes | None
    params: dict[str, str] | None
    at_ms: int | None


@dataclass
class FakeTransport:
    """
    Transport that replays scripted responses or delegates to a handler.

    Scripted items may be TransportResponse instances or exceptions to raise.
    """

    responses: Iterable[TransportResponse | BaseException] = ()
    handler: Handler | None = None
    clock: FakeClock | None = None
    calls: list[RecordedCall] = field(default_factory=list)
    closed: bool = False

    def __post_init__(self) -> None:
        self._queue: deque[TransportResponse | BaseException] = deque(self.responses)

    async def perform(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
        params: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        self.calls.append(
            RecordedCall(
                method=method,
                url=url,
                headers=dict(headers),
                body=body,
                params=dict(params) if params else None,
                at_ms=self.clock.now_ms if self.clock is not None else None,
            )
        )
        if self.handler is not None:
            return await self.handler(method, url, headers, body)
        item = self._queue.popleft()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
