"""
Error taxonomy for the REST governor.

Rate limits, server errors and transport failures are retried internally and
only surface once their budgets are exhausted. Every other failure surfaces on
first occurrence. Each error carries the bucket key it was raised for so a
caller can diagnose it without access to governor internals.
"""

from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """Base class for all errors raised by the governor."""

    def __init__(
        self,
        message: str,
        *,
        bucket_key: str | None = None,
        status: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.bucket_key = bucket_key
        self.status = status
        self.body = body


class RateLimitExceeded(ApiError):
    """Raised when a bucket keeps answering 429 past the retry budget."""

    def __init__(
        self,
        message: str,
        *,
        bucket_key: str | None = None,
        attempts: int = 0,
        retry_after_ms: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message, bucket_key=bucket_key, status=429, body=body)
        self.attempts = attempts
        self.retry_after_ms = retry_after_ms


class GlobalRateLimited(ApiError):
    """Raised when the account-wide lock is active and the caller opted out of waiting."""

    def __init__(
        self,
        message: str,
        *,
        bucket_key: str | None = None,
        retry_after_ms: int = 0,
    ) -> None:
        super().__init__(message, bucket_key=bucket_key, status=429)
        self.retry_after_ms = retry_after_ms


class ServerError(ApiError):
    """Raised when 5xx responses persist after the backoff budget."""

    def __init__(
        self,
        message: str,
        *,
        bucket_key: str | None = None,
        status: int | None = None,
        body: Any = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, bucket_key=bucket_key, status=status, body=body)
        self.attempts = attempts


class NetworkError(ApiError):
    """Raised when the transport keeps failing after the backoff budget."""

    def __init__(
        self,
        message: str,
        *,
        bucket_key: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, bucket_key=bucket_key)
        self.attempts = attempts


class ClientError(ApiError):
    """
    Raised for any non-429 4xx response. Never retried.

    Attributes:
        code: API error code from the JSON payload, if any.
        message: Human readable error message from the JSON payload, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        bucket_key: str | None = None,
        status: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message, bucket_key=bucket_key, status=status, body=body)
        self.code: int | None = None
        self.message: str | None = None
        if isinstance(body, dict):
            code = body.get("code")
            if isinstance(code, int):
                self.code = code
            text = body.get("message")
            if isinstance(text, str):
                self.message = text


class BadRequest(ClientError):
    """400: the request was malformed or failed validation."""


class Unauthorized(ClientError):
    """401: missing or invalid credentials."""


class Forbidden(ClientError):
    """403: the credentials lack permission for this resource."""


class NotFound(ClientError):
    """404: the resource does not exist."""


class MethodNotAllowed(ClientError):
    """405: the route does not accept this HTTP method."""


_STATUS_ERRORS: dict[int, type[ClientError]] = {
    400: BadRequest,
    401: Unauthorized,
    403: Forbidden,
    404: NotFound,
    405: MethodNotAllowed,
}


def error_class_for_status(status: int) -> type[ClientError]:
    """Pick the most specific ClientError subclass for a 4xx status."""
    return _STATUS_ERRORS.get(status, ClientError)


class TransportError(Exception):
    """
    Raised by transports when a request never produced an HTTP response.

    Handled inside the dispatcher; callers only ever see it wrapped in
    NetworkError once the retry budget is spent.
    """
