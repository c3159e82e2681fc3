"""
Request dispatcher: the single entry point between callers and the transport.

For every call:
1. Resolve the route to a bucket key and get its limiter
2. Wait out the account-wide lock
3. Enter the bucket (pre-emptive wait if its quota is exhausted); start over
   if the bucket was pruned or the account got locked while queued
4. Perform the transport call
5. Feed the response headers back into the bucket, leave the bucket
6. Return, raise, or retry depending on the outcome

Retry policy:
- 429 (bucket): the bucket's reset is extended; sleep Retry-After, retry
- 429 (global): lock every bucket for Retry-After before leaving the bucket;
  sleep, retry
- 5xx / transport failure: capped exponential backoff with jitter
- other 4xx: raise immediately, never retried
429s, 5xx and transport failures each have their own budget. Sleeps between
attempts happen outside the bucket so other callers can use it.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import orjson
from pydantic import BaseModel

from restgovernor.client.types import DispatcherMetrics, GovernorConfig, TransportResponse
from restgovernor.errors import (
    NetworkError,
    RateLimitExceeded,
    ServerError,
    TransportError,
    error_class_for_status,
)
from restgovernor.ratelimit.backoff import BackoffState, compute_backoff_delay
from restgovernor.ratelimit.clock import SleepFn, TimeFn, sleep_ms
from restgovernor.ratelimit.global_limiter import GlobalLimiter
from restgovernor.ratelimit.headers import RateLimitHeaders
from restgovernor.ratelimit.registry import BucketRegistry
from restgovernor.ratelimit.route import Route, resolve

if TYPE_CHECKING:
    from collections.abc import Mapping

    from restgovernor.client.transport import Transport

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


def encode_body(body: Any) -> tuple[bytes | None, str | None]:
    """
    Serialize a request body.

    pydantic models are dumped with exclude_unset, so fields never assigned
    are omitted while fields explicitly set to None are sent as null.

    Returns:
        (payload, content_type); (None, None) when there is no body.
    """
    if body is None:
        return None, None
    if isinstance(body, (bytes, bytearray)):
        return bytes(body), None
    if isinstance(body, BaseModel):
        body = body.model_dump(mode="json", exclude_unset=True)
    return orjson.dumps(body), JSON_CONTENT_TYPE


def decode_body(response: TransportResponse) -> Any:
    """Decode a response body: JSON when declared, text otherwise, None if empty."""
    if not response.body:
        return None
    if response.is_json:
        try:
            return orjson.loads(response.body)
        except orjson.JSONDecodeError:
            logger.warning("Malformed JSON body", extra={"status": response.status})
    return response.body.decode("utf-8", errors="replace")


@dataclass
class RequestAttempt:
    """
    State of one dispatch() call across its internal retries.

    Attributes:
        route: Route being requested.
        bucket_key: Resolved bucket key.
        body: Encoded request body.
        headers: Request headers.
        params: Query parameters.
        attempt_count: Transport calls made so far.
        ratelimit_attempts: 429 responses seen so far.
    """

    route: Route
    bucket_key: str
    body: bytes | None = None
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] | None = None
    attempt_count: int = 0
    ratelimit_attempts: int = 0
    server_backoff: BackoffState = field(default_factory=BackoffState)
    network_backoff: BackoffState = field(default_factory=BackoffState)


class Dispatcher:
    """
    Governs every request against per-bucket and global rate limits.

    The dispatcher owns its BucketRegistry and GlobalLimiter; they are
    created with it and discarded with it.
    """

    def __init__(
        self,
        transport: Transport,
        base_url: str,
        config: GovernorConfig | None = None,
        *,
        rng: random.Random | None = None,
        _time_fn: TimeFn | None = None,
        _sleep_fn: SleepFn | None = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            transport: Transport performing the HTTP calls.
            base_url: URL prefix every route path is appended to.
            config: Retry budgets.
            rng: Optional seeded Random for deterministic backoff jitter.
            _time_fn: Time source in milliseconds (tests).
            _sleep_fn: Sleep coroutine taking seconds (tests).
        """
        self._transport = transport
        self._base_url = base_url.rstrip("/")
        self._config = config or GovernorConfig()
        self._rng = rng
        self._sleep_fn = _sleep_fn
        self._registry = BucketRegistry(_time_fn=_time_fn, _sleep_fn=_sleep_fn)
        self._global = GlobalLimiter(_time_fn=_time_fn, _sleep_fn=_sleep_fn)
        self.metrics = DispatcherMetrics()

    @property
    def config(self) -> GovernorConfig:
        return self._config

    @property
    def registry(self) -> BucketRegistry:
        return self._registry

    @property
    def global_limiter(self) -> GlobalLimiter:
        return self._global

    @property
    def transport(self) -> Transport:
        return self._transport

    async def close(self) -> None:
        """Close the underlying transport."""
        await self._transport.close()

    async def dispatch(
        self,
        route: Route,
        body: Any = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        wait_global: bool = True,
    ) -> Any:
        """
        Perform a request under rate-limit governance.

        Args:
            route: Route to request.
            body: JSON-serializable body, pydantic model, or raw bytes.
            params: Query parameters.
            headers: Extra request headers.
            wait_global: If False, raise GlobalRateLimited instead of waiting
                while the account-wide lock is active.

        Returns:
            Decoded response body (None for empty bodies).

        Raises:
            ClientError: On a non-429 4xx response.
            RateLimitExceeded: When the 429 budget is exhausted.
            GlobalRateLimited: When wait_global is False and the account is locked.
            ServerError: When the 5xx budget is exhausted.
            NetworkError: When the transport failure budget is exhausted.
        """
        key = resolve(route)

        payload, content_type = encode_body(body)
        request_headers = dict(headers or {})
        if content_type and not any(name.lower() == "content-type" for name in request_headers):
            request_headers["Content-Type"] = content_type

        attempt = RequestAttempt(
            route=route,
            bucket_key=key,
            body=payload,
            headers=request_headers,
            params={name: str(value) for name, value in params.items()} if params else None,
        )
        url = f"{self._base_url}{route.path}"
        self.metrics.dispatched += 1

        while True:
            limiter = self._registry.get_or_create(key)
            await self._global.acquire(wait=wait_global, bucket_key=key)
            if await limiter.acquire() > 0:
                self.metrics.preemptive_waits += 1

            # Pruned while this caller waited on the global lock
            if self._registry.get(key) is not limiter:
                limiter.release()
                continue
            # Locked by a global 429 while this caller was queued on the bucket
            if self._global.is_locked():
                limiter.release()
                continue

            decoded: Any = None
            rate_limit = RateLimitHeaders()
            try:
                response, failure = await self._send(attempt, url)
                if response is not None:
                    decoded = decode_body(response)
                    rate_limit = RateLimitHeaders.from_headers(
                        response.headers,
                        decoded if response.status == 429 else None,
                    )
                    limiter.update(rate_limit, status=response.status)
                    if response.status == 429 and rate_limit.is_global:
                        # Before release, so callers queued on this bucket see the lock
                        await self._global.lock_for(self._ratelimit_wait_ms(rate_limit))
            finally:
                limiter.release()

            if failure is not None:
                await self._on_network_error(attempt, failure)
                continue

            assert response is not None  # Type narrowing
            attempt.network_backoff.reset()
            status = response.status

            if status == 429:
                await self._on_rate_limited(attempt, rate_limit, decoded)
                continue

            if status >= 500:
                await self._on_server_error(attempt, response, rate_limit, decoded)
                continue

            if status >= 400:
                self.metrics.client_errors += 1
                logger.error(
                    "HTTP client error",
                    extra={"bucket_key": key, "status": status, "method": route.method},
                )
                error_cls = error_class_for_status(status)
                raise error_cls(
                    f"{status} on {route.method} {route.path_template}",
                    bucket_key=key,
                    status=status,
                    body=decoded,
                )

            self.metrics.succeeded += 1
            return decoded

    async def _send(
        self,
        attempt: RequestAttempt,
        url: str,
    ) -> tuple[TransportResponse | None, TransportError | None]:
        """Perform the transport call; transport failures are returned, not raised."""
        attempt.attempt_count += 1
        self.metrics.transport_calls += 1
        try:
            response = await self._transport.perform(
                attempt.route.method,
                url,
                attempt.headers,
                attempt.body,
                attempt.params,
            )
        except TransportError as e:
            return None, e
        return response, None

    def _ratelimit_wait_ms(self, rate_limit: RateLimitHeaders) -> int:
        return rate_limit.wait_ms() or self._config.backoff.base_delay_ms

    async def _on_rate_limited(
        self,
        attempt: RequestAttempt,
        rate_limit: RateLimitHeaders,
        body: Any,
    ) -> None:
        """Handle a 429: sleep or give up. A global lock is already in place."""
        attempt.ratelimit_attempts += 1
        wait_ms = self._ratelimit_wait_ms(rate_limit)

        if rate_limit.is_global:
            self.metrics.ratelimited_global += 1
        else:
            self.metrics.ratelimited_bucket += 1

        logger.warning(
            "Rate limit hit",
            extra={
                "bucket_key": attempt.bucket_key,
                "global": rate_limit.is_global,
                "scope": rate_limit.scope,
                "retry_after_ms": wait_ms,
                "attempt": attempt.ratelimit_attempts,
            },
        )

        if attempt.ratelimit_attempts >= self._config.max_ratelimit_retries:
            self.metrics.failed_ratelimit += 1
            raise RateLimitExceeded(
                f"Rate limit retries ({self._config.max_ratelimit_retries}) exhausted "
                f"for {attempt.bucket_key}",
                bucket_key=attempt.bucket_key,
                attempts=attempt.ratelimit_attempts,
                retry_after_ms=wait_ms,
                body=body,
            )

        self.metrics.retries += 1
        await sleep_ms(wait_ms, self._sleep_fn)

    async def _on_server_error(
        self,
        attempt: RequestAttempt,
        response: TransportResponse,
        rate_limit: RateLimitHeaders,
        body: Any,
    ) -> None:
        """Handle a 5xx: back off or give up."""
        self.metrics.server_errors += 1
        state = attempt.server_backoff
        state.record_error()
        logger.warning(
            "Server error",
            extra={
                "bucket_key": attempt.bucket_key,
                "status": response.status,
                "attempt": state.attempt,
            },
        )
        if state.exhausted(self._config.backoff):
            self.metrics.failed_server += 1
            raise ServerError(
                f"{response.status} on {attempt.bucket_key} after {state.attempt} attempts",
                bucket_key=attempt.bucket_key,
                status=response.status,
                body=body,
                attempts=state.attempt,
            )
        delay_ms = compute_backoff_delay(
            self._config.backoff,
            state,
            rate_limit.retry_after_ms,
            rng=self._rng,
        )
        self.metrics.retries += 1
        await sleep_ms(delay_ms, self._sleep_fn)

    async def _on_network_error(self, attempt: RequestAttempt, error: TransportError) -> None:
        """Handle a transport failure: back off or give up."""
        self.metrics.network_errors += 1
        state = attempt.network_backoff
        state.record_error()
        logger.warning(
            "Request failed",
            extra={"bucket_key": attempt.bucket_key, "error": str(error), "attempt": state.attempt},
        )
        if state.exhausted(self._config.backoff):
            self.metrics.failed_network += 1
            raise NetworkError(
                f"Transport failed for {attempt.bucket_key} after {state.attempt} attempts",
                bucket_key=attempt.bucket_key,
                attempts=state.attempt,
            ) from error
        delay_ms = compute_backoff_delay(self._config.backoff, state, rng=self._rng)
        self.metrics.retries += 1
        await sleep_ms(delay_ms, self._sleep_fn)

    def get_status(self) -> dict[str, Any]:
        """Get current dispatcher status for observability."""
        return {
            "global": self._global.get_status(),
            "buckets": len(self._registry),
            "metrics": self.metrics.as_dict(),
        }
