"""Authentication configuration for outbound agent requests.

Supported schemes:
- none (no headers)
- Bearer tokens
- API keys in a named header
- Arbitrary custom headers

Only bearer auth can be expressed as a single token for SDK-style
clients; API key and custom auth must travel as a header map.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, TypeAlias

from .exceptions import AuthConfigurationError


@dataclass(frozen=True)
class NoAuth:
    type: ClassVar[str] = "none"


@dataclass(frozen=True)
class BearerAuth:
    """Bearer token credentials (JWT, OAuth2 access token).

    Attributes:
        token: The bearer token string.
    """

    type: ClassVar[str] = "bearer"
    token: str = ""


@dataclass(frozen=True)
class ApiKeyAuth:
    """API key sent in a single named header.

    Attributes:
        header_name: HTTP header name (e.g. ``X-API-Key``).
        header_value: The API key value.
    """

    type: ClassVar[str] = "apiKey"
    header_name: str = ""
    header_value: str = ""


@dataclass(frozen=True)
class CustomHeadersAuth:
    """Headers copied verbatim onto every request.

    Header names keep the exact case given; some agents compare them
    case-sensitively.
    """

    type: ClassVar[str] = "custom"
    headers: Mapping[str, str] = field(default_factory=dict)


AgentAuthConfig: TypeAlias = NoAuth | BearerAuth | ApiKeyAuth | CustomHeadersAuth


def parse_auth_config(data: Mapping[str, Any] | None) -> AgentAuthConfig:
    """Build an auth config from its stored dict form.

    Accepts the shape ``{type, token, apiKeyHeader, apiKeyValue,
    customHeaders}``. Unknown or missing types mean no auth.
    """
    if not data:
        return NoAuth()
    auth_type = data.get("type")
    if auth_type == "bearer":
        return BearerAuth(token=str(data.get("token") or ""))
    if auth_type == "apiKey":
        return ApiKeyAuth(
            header_name=str(data.get("apiKeyHeader") or ""),
            header_value=str(data.get("apiKeyValue") or ""),
        )
    if auth_type == "custom":
        raw_headers = data.get("customHeaders") or {}
        return CustomHeadersAuth(
            headers={str(k): str(v) for k, v in dict(raw_headers).items()}
        )
    return NoAuth()


def auth_to_dict(auth: AgentAuthConfig | None) -> dict[str, Any]:
    """Inverse of :func:`parse_auth_config`."""
    if isinstance(auth, BearerAuth):
        return {"type": "bearer", "token": auth.token}
    if isinstance(auth, ApiKeyAuth):
        return {
            "type": "apiKey",
            "apiKeyHeader": auth.header_name,
            "apiKeyValue": auth.header_value,
        }
    if isinstance(auth, CustomHeadersAuth):
        return {"type": "custom", "customHeaders": dict(auth.headers)}
    return {"type": "none"}


def build_auth_headers(auth: AgentAuthConfig | None = None) -> dict[str, str]:
    """Build HTTP headers for the configured authentication.

    Returns:
        Dictionary of HTTP headers; empty when nothing usable is configured.
    """
    headers: dict[str, str] = {}

    if isinstance(auth, BearerAuth):
        if auth.token:
            headers["Authorization"] = f"Bearer {auth.token}"
    elif isinstance(auth, ApiKeyAuth):
        if auth.header_name and auth.header_value:
            headers[auth.header_name] = auth.header_value
    elif isinstance(auth, CustomHeadersAuth):
        headers.update(auth.headers)

    return headers


def token_for_bearer_client(auth: AgentAuthConfig | None = None) -> str:
    """Return the bearer token for token-based clients, else ``""``."""
    if isinstance(auth, BearerAuth):
        return auth.token
    return ""


def auth_needs_custom_headers(auth: AgentAuthConfig | None) -> bool:
    """True when auth can only be sent as a header map (API key, custom)."""
    return isinstance(auth, (ApiKeyAuth, CustomHeadersAuth))


def ensure_auth_usable(auth: AgentAuthConfig | None) -> None:
    """Reject header-based auth that would produce no headers.

    Raises:
        AuthConfigurationError: If an API key or custom config is selected
            but yields no header.
    """
    if not auth_needs_custom_headers(auth) or build_auth_headers(auth):
        return
    if isinstance(auth, ApiKeyAuth):
        raise AuthConfigurationError(
            "API key auth is selected but the header name or value is empty. "
            "Fill in both or switch auth to 'none'."
        )
    raise AuthConfigurationError(
        "Custom header auth is selected but no headers are defined. "
        "Add at least one header or switch auth to 'none'."
    )
