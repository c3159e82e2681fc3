"""
Types and configuration for the REST client.

Configuration exposed to an embedding application is deliberately small:
rate-limit retry budget, backoff retry budget and backoff shape, plus the
connection settings of the client itself. Every setting can also come from
RESTGOV_* environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from restgovernor.ratelimit.backoff import BackoffConfig

DEFAULT_API_BASE = "https://discord.com/api"
DEFAULT_API_VERSION = 10
DEFAULT_USER_AGENT = "DiscordBot (https://github.com/restgovernor/restgovernor, 0.1.0)"

ENV_PREFIX = "RESTGOV_"

# Redacted env vars for logging
REDACTED_ENV_VARS = frozenset({"RESTGOV_TOKEN"})


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from e


@dataclass
class GovernorConfig:
    """
    Retry budgets for the dispatcher.

    Attributes:
        max_ratelimit_retries: 429 responses tolerated per dispatch; the
            response that reaches this count raises RateLimitExceeded.
        backoff: Backoff for 5xx responses and transport failures.
    """

    max_ratelimit_retries: int = 5
    backoff: BackoffConfig = field(default_factory=BackoffConfig)

    def __post_init__(self) -> None:
        if self.max_ratelimit_retries < 1:
            raise ValueError(
                f"max_ratelimit_retries must be >= 1, got {self.max_ratelimit_retries}"
            )

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> GovernorConfig:
        """Build from RESTGOV_* environment variables, falling back to defaults."""
        env = os.environ if env is None else env
        defaults = BackoffConfig()
        backoff = BackoffConfig(
            base_delay_ms=_env_int(env, "BACKOFF_BASE_MS", defaults.base_delay_ms),
            max_delay_ms=_env_int(env, "BACKOFF_MAX_MS", defaults.max_delay_ms),
            multiplier=_env_float(env, "BACKOFF_MULTIPLIER", defaults.multiplier),
            jitter_factor=_env_float(env, "BACKOFF_JITTER", defaults.jitter_factor),
            max_retries=_env_int(env, "MAX_BACKOFF_RETRIES", defaults.max_retries),
        )
        return cls(
            max_ratelimit_retries=_env_int(env, "MAX_RATELIMIT_RETRIES", 5),
            backoff=backoff,
        )


@dataclass
class ClientConfig:
    """
    Configuration for RestClient.

    Attributes:
        api_base: API root without version.
        api_version: API version appended to api_base.
        request_timeout_ms: Total timeout of one transport call.
        user_agent: User-Agent sent with every request.
        governor: Retry budgets.
    """

    api_base: str = DEFAULT_API_BASE
    api_version: int = DEFAULT_API_VERSION
    request_timeout_ms: int = 15000
    user_agent: str = DEFAULT_USER_AGENT
    governor: GovernorConfig = field(default_factory=GovernorConfig)

    def __post_init__(self) -> None:
        self.api_base = self.api_base.rstrip("/")
        if not self.api_base.startswith(("http://", "https://")):
            raise ValueError(f"api_base must be an http(s) URL, got {self.api_base!r}")
        if self.api_version < 1:
            raise ValueError(f"api_version must be >= 1, got {self.api_version}")
        if self.request_timeout_ms <= 0:
            raise ValueError(f"request_timeout_ms must be > 0, got {self.request_timeout_ms}")

    @property
    def base_url(self) -> str:
        return f"{self.api_base}/v{self.api_version}"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ClientConfig:
        """Build from RESTGOV_* environment variables, falling back to defaults."""
        env = os.environ if env is None else env
        return cls(
            api_base=env.get(ENV_PREFIX + "API_BASE") or DEFAULT_API_BASE,
            api_version=_env_int(env, "API_VERSION", DEFAULT_API_VERSION),
            request_timeout_ms=_env_int(env, "REQUEST_TIMEOUT_MS", 15000),
            user_agent=env.get(ENV_PREFIX + "USER_AGENT") or DEFAULT_USER_AGENT,
            governor=GovernorConfig.from_env(env),
        )


@dataclass(frozen=True)
class TransportResponse:
    """
    Raw result of one transport call.

    Attributes:
        status: HTTP status code.
        headers: Response headers (lookups are case-insensitive via `header()`).
        body: Raw response body.
        content_type: Response content type, if any.
    """

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    content_type: str | None = None

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    @property
    def is_json(self) -> bool:
        content_type = self.content_type or self.header("Content-Type") or ""
        return "json" in content_type.lower()


@dataclass
class DispatcherMetrics:
    """Counters for Dispatcher observability."""

    dispatched: int = 0
    succeeded: int = 0
    transport_calls: int = 0
    ratelimited_bucket: int = 0
    ratelimited_global: int = 0
    server_errors: int = 0
    network_errors: int = 0
    client_errors: int = 0
    retries: int = 0
    # Entries that had to wait for an exhausted bucket to reset
    preemptive_waits: int = 0

    # Surfaced errors by kind
    failed_ratelimit: int = 0
    failed_server: int = 0
    failed_network: int = 0

    def as_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)
