"""Client-side rate-limit governor for bucketed REST APIs."""

from restgovernor.client import ClientConfig, Dispatcher, GovernorConfig, RestClient
from restgovernor.errors import (
    ApiError,
    ClientError,
    GlobalRateLimited,
    NetworkError,
    RateLimitExceeded,
    ServerError,
)
from restgovernor.ratelimit import Route, resolve

__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "ClientConfig",
    "ClientError",
    "Dispatcher",
    "GlobalRateLimited",
    "GovernorConfig",
    "NetworkError",
    "RateLimitExceeded",
    "RestClient",
    "Route",
    "ServerError",
    "resolve",
]
