"""
Routes and bucket key resolution.

The server partitions rate limits by route template and by a "major"
resource id embedded in the path. Sending messages to two different channels
uses two independent quotas, while editing two messages in the same channel
draws from one. The bucket key therefore substitutes only the major parameter
into the template and leaves every other placeholder literal:

    POST /channels/{channel_id}/messages, channel_id=111
        -> "POST:/channels/111/messages"
    PATCH /channels/{channel_id}/messages/{message_id}, channel_id=111, message_id=9
        -> "PATCH:/channels/111/messages/{message_id}"

Routes authorized by a per-resource token (webhook and interaction tokens)
get an explicit discriminator suffix so they never share a key with
owner-authenticated routes of the same shape. Token values never enter a key.
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from urllib.parse import quote

# Precedence order when a route carries more than one candidate
MAJOR_PARAMETERS: tuple[str, ...] = ("channel_id", "guild_id", "webhook_id", "interaction_id")

# Path parameters that act as credentials for the route
TOKEN_PARAMETERS: frozenset[str] = frozenset({"webhook_token", "interaction_token"})

TOKEN_DISCRIMINATOR = "token"

HTTP_METHODS: frozenset[str] = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"})

_formatter = string.Formatter()


def _template_fields(template: str) -> list[str]:
    return [name for _, name, _, _ in _formatter.parse(template) if name]


@dataclass(frozen=True)
class Route:
    """
    An immutable API route: method, path template, and its parameter values.

    Build routes with `Route.build()`, which validates the template and picks
    the major parameter. The params tuple is excluded from repr because it may
    hold tokens.

    Attributes:
        method: Upper-case HTTP method.
        path_template: Path with `{name}` placeholders, not the resolved URL.
        params: Placeholder values as (name, value) pairs.
        major_param_name: Placeholder the server partitions limits by, if any.
        discriminator: Auth discriminator appended to the bucket key, if any.
    """

    method: str
    path_template: str
    params: tuple[tuple[str, str], ...] = field(default=(), repr=False)
    major_param_name: str | None = None
    discriminator: str | None = None

    @classmethod
    def build(
        cls,
        method: str,
        path_template: str,
        *,
        major_param_name: str | None = None,
        discriminator: str | None = None,
        **params: object,
    ) -> Route:
        """
        Create a route, validating it against its template.

        Args:
            method: HTTP method (any case).
            path_template: Path template, e.g. "/channels/{channel_id}".
            major_param_name: Override for the major parameter. By default the
                first of MAJOR_PARAMETERS present in the template is used.
            discriminator: Override for the auth discriminator. By default
                routes carrying a token parameter get TOKEN_DISCRIMINATOR.
            **params: Values for every placeholder in the template.

        Raises:
            ValueError: On an unknown method, or when params and template
                placeholders do not match.
        """
        verb = method.upper()
        if verb not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method!r}")

        fields = _template_fields(path_template)
        missing = [name for name in fields if name not in params]
        if missing:
            raise ValueError(f"Missing path parameters for {path_template}: {missing}")
        unknown = sorted(set(params) - set(fields))
        if unknown:
            raise ValueError(f"Unknown path parameters for {path_template}: {unknown}")

        if major_param_name is None:
            major_param_name = next((name for name in MAJOR_PARAMETERS if name in fields), None)
        elif major_param_name not in fields:
            raise ValueError(f"Major parameter {major_param_name!r} not in {path_template}")

        if discriminator is None and TOKEN_PARAMETERS.intersection(fields):
            discriminator = TOKEN_DISCRIMINATOR

        return cls(
            method=verb,
            path_template=path_template,
            params=tuple((name, str(params[name])) for name in fields),
            major_param_name=major_param_name,
            discriminator=discriminator,
        )

    @property
    def major_param(self) -> str | None:
        """Value of the major parameter, or None for unscoped routes."""
        if self.major_param_name is None:
            return None
        return dict(self.params).get(self.major_param_name)

    @property
    def path(self) -> str:
        """Concrete request path with every placeholder filled in and quoted."""
        values = {name: quote(value, safe="") for name, value in self.params}
        return self.path_template.format_map(values)

    @property
    def uses_token_auth(self) -> bool:
        """True when the route is authorized by a token in its own path."""
        return any(name in TOKEN_PARAMETERS for name, _ in self.params)

    @property
    def bucket_key(self) -> str:
        return resolve(self)


def resolve(route: Route) -> str:
    """
    Resolve a route to its bucket key.

    Pure: identical method, template, major value and discriminator always
    give an identical key.

    Returns:
        "{METHOD}:{template with major param substituted}", suffixed with
        "#{discriminator}" for token-authorized routes.
    """
    path = route.path_template
    major = route.major_param
    if route.major_param_name is not None and major is not None:
        path = path.replace("{" + route.major_param_name + "}", major)

    key = f"{route.method}:{path}"
    if route.discriminator:
        key = f"{key}#{route.discriminator}"
    return key
