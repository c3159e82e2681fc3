"""
HTTP transport used by the dispatcher.

The dispatcher only depends on the Transport protocol; AiohttpTransport is
the production implementation. Failures that never produced an HTTP response
(connection errors, timeouts) are raised as TransportError so the dispatcher
can retry them without knowing about aiohttp.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Mapping
from typing import Protocol

import aiohttp

from restgovernor.client.types import TransportResponse
from restgovernor.errors import TransportError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Performs one HTTP call and returns the raw response."""

    async def perform(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
        params: Mapping[str, str] | None = None,
    ) -> TransportResponse: ...

    async def close(self) -> None: ...


def _trace_id() -> str:
    return secrets.token_hex(3)


class AiohttpTransport:
    """
    aiohttp-backed transport.

    The session is created lazily and reused across calls; call close() (or
    close the owning RestClient) on shutdown.
    """

    def __init__(
        self,
        request_timeout_ms: int = 15000,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            request_timeout_ms: Total timeout for one call.
            session: Existing session to use. A session passed in is not
                closed by close().
        """
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_ms / 1000)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def perform(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
        params: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        """
        Send one request.

        Raises:
            TransportError: On connection failures and timeouts.
        """
        trace = _trace_id()
        logger.info("HTTP OUT [%s] %s", trace, method, extra={"url": url})

        session = await self._get_session()
        try:
            async with session.request(
                method,
                url,
                headers=dict(headers),
                data=body,
                params=dict(params) if params else None,
            ) as response:
                payload = await response.read()
                result = TransportResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    body=payload,
                    content_type=response.content_type,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(
                "HTTP ERR [%s] %s",
                trace,
                type(e).__name__,
                extra={"url": url, "error": str(e)},
            )
            raise TransportError(f"{method} request failed: {type(e).__name__}: {e}") from e

        logger.info("HTTP IN  [%s] %d", trace, result.status)
        logger.debug("HTTP IN  [%s] %d bytes", trace, len(result.body))
        return result
