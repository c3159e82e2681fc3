"""
REST client facade.

Endpoint wrappers build a Route and call request(); everything about rate
limits, retries and backoff lives in the Dispatcher underneath. Only a few
wrappers are provided here, covering each kind of route the governor
distinguishes: unscoped, channel-scoped, and token-authorized.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from restgovernor.client.dispatcher import Dispatcher
from restgovernor.client.transport import AiohttpTransport
from restgovernor.client.types import ClientConfig
from restgovernor.ratelimit.route import Route

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from restgovernor.client.transport import Transport

AUDIT_LOG_REASON_HEADER = "X-Audit-Log-Reason"


def _bot_authorization(token: str) -> str:
    return f"Bot {token.removeprefix('Bot ').strip()}"


class RestClient:
    """
    Async REST client with client-side rate-limit governance.

    Usage:
        async with RestClient(token) as client:
            channel = await client.get_channel(1234)
    """

    def __init__(
        self,
        token: str,
        config: ClientConfig | None = None,
        transport: Transport | None = None,
        *,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            token: Bot token, with or without the "Bot " prefix.
            config: Client configuration.
            transport: Transport to use. Defaults to AiohttpTransport.
            dispatcher: Pre-built dispatcher (overrides transport and the
                governor settings of config).
        """
        if not token or not token.strip():
            raise ValueError("token is required")
        self._config = config or ClientConfig()
        self._authorization = _bot_authorization(token)
        if dispatcher is None:
            transport = transport or AiohttpTransport(self._config.request_timeout_ms)
            dispatcher = Dispatcher(transport, self._config.base_url, self._config.governor)
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    async def close(self) -> None:
        """Close the underlying transport."""
        await self._dispatcher.close()

    async def __aenter__(self) -> RestClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def request(
        self,
        route: Route,
        body: Any = None,
        *,
        params: Mapping[str, Any] | None = None,
        reason: str | None = None,
        headers: Mapping[str, str] | None = None,
        wait_global: bool = True,
    ) -> Any:
        """
        Send a request through the dispatcher.

        May block for as long as rate limits require.

        Args:
            route: Route to request.
            body: Request body (mapping, pydantic model, bytes or None).
            params: Query parameters; None values are dropped.
            reason: Audit log reason, sent URL-encoded.
            headers: Extra headers.
            wait_global: If False, raise GlobalRateLimited instead of waiting.

        Returns:
            Decoded response body.
        """
        request_headers: dict[str, str] = {"User-Agent": self._config.user_agent}
        if not route.uses_token_auth:
            request_headers["Authorization"] = self._authorization
        if reason is not None:
            request_headers[AUDIT_LOG_REASON_HEADER] = quote(reason, safe=" ")
        if headers:
            request_headers.update(headers)

        query = {name: value for name, value in params.items() if value is not None} if params else None

        return await self._dispatcher.dispatch(
            route,
            body,
            params=query,
            headers=request_headers,
            wait_global=wait_global,
        )

    async def get_gateway_bot(self) -> Any:
        return await self.request(Route.build("GET", "/gateway/bot"))

    async def get_channel(self, channel_id: int | str) -> Any:
        return await self.request(
            Route.build("GET", "/channels/{channel_id}", channel_id=channel_id)
        )

    async def modify_channel(
        self,
        channel_id: int | str,
        *,
        reason: str | None = None,
        **fields: Any,
    ) -> Any:
        """
        Update a channel.

        Only the fields passed are sent; a field passed as None is sent as
        null, which clears it on the server.
        """
        return await self.request(
            Route.build("PATCH", "/channels/{channel_id}", channel_id=channel_id),
            fields,
            reason=reason,
        )

    async def create_message(self, channel_id: int | str, body: Any) -> Any:
        return await self.request(
            Route.build("POST", "/channels/{channel_id}/messages", channel_id=channel_id),
            body,
        )

    async def edit_message(self, channel_id: int | str, message_id: int | str, body: Any) -> Any:
        return await self.request(
            Route.build(
                "PATCH",
                "/channels/{channel_id}/messages/{message_id}",
                channel_id=channel_id,
                message_id=message_id,
            ),
            body,
        )

    async def execute_webhook(
        self,
        webhook_id: int | str,
        webhook_token: str,
        body: Any,
        *,
        wait: bool = False,
        thread_id: int | str | None = None,
    ) -> Any:
        """Execute a webhook. Authorized by its token; no bot credentials are sent."""
        return await self.request(
            Route.build(
                "POST",
                "/webhooks/{webhook_id}/{webhook_token}",
                webhook_id=webhook_id,
                webhook_token=webhook_token,
            ),
            body,
            params={"wait": "true" if wait else None, "thread_id": thread_id},
        )

    async def create_interaction_response(
        self,
        interaction_id: int | str,
        interaction_token: str,
        body: Any,
    ) -> Any:
        return await self.request(
            Route.build(
                "POST",
                "/interactions/{interaction_id}/{interaction_token}/callback",
                interaction_id=interaction_id,
                interaction_token=interaction_token,
            ),
            body,
        )
