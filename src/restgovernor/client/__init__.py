"""
REST client built on the rate-limit governor.

RestClient is the caller-facing facade; Dispatcher performs every request
under per-bucket and account-wide rate limits.
"""

from restgovernor.client.dispatcher import Dispatcher, RequestAttempt, decode_body, encode_body
from restgovernor.client.rest_client import RestClient
from restgovernor.client.transport import AiohttpTransport, Transport
from restgovernor.client.types import (
    ClientConfig,
    DispatcherMetrics,
    GovernorConfig,
    TransportResponse,
)

__all__ = [
    "AiohttpTransport",
    "ClientConfig",
    "Dispatcher",
    "DispatcherMetrics",
    "GovernorConfig",
    "RequestAttempt",
    "RestClient",
    "Transport",
    "TransportResponse",
    "decode_body",
    "encode_body",
]
