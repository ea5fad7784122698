"""Tests for authentication configuration and header building."""

from __future__ import annotations

import pytest

from a2a_dashboard.auth import (
    ApiKeyAuth,
    BearerAuth,
    CustomHeadersAuth,
    NoAuth,
    auth_needs_custom_headers,
    auth_to_dict,
    build_auth_headers,
    ensure_auth_usable,
    parse_auth_config,
    token_for_bearer_client,
)
from a2a_dashboard.exceptions import AuthConfigurationError, RequestValidationError


class TestBuildAuthHeaders:
    """Header map per auth type."""

    def test_no_auth(self):
        assert build_auth_headers() == {}
        assert build_auth_headers(None) == {}
        assert build_auth_headers(NoAuth()) == {}

    def test_bearer_token_header(self):
        headers = build_auth_headers(BearerAuth(token="eyJhbGc..."))
        assert headers == {"Authorization": "Bearer eyJhbGc..."}

    def test_bearer_empty_token(self):
        assert build_auth_headers(BearerAuth(token="")) == {}

    def test_api_key_header(self):
        auth = ApiKeyAuth(header_name="X-API-Key", header_value="secret")
        assert build_auth_headers(auth) == {"X-API-Key": "secret"}

    def test_api_key_requires_both_fields(self):
        assert build_auth_headers(ApiKeyAuth(header_name="X-API-Key")) == {}
        assert build_auth_headers(ApiKeyAuth(header_value="secret")) == {}

    def test_custom_headers_verbatim(self):
        """Header names keep their case."""
        auth = CustomHeadersAuth(headers={"x-Tenant-ID": "t1", "X-Trace": "abc"})
        assert build_auth_headers(auth) == {"x-Tenant-ID": "t1", "X-Trace": "abc"}

    def test_pure_function(self):
        auth = CustomHeadersAuth(headers={"A": "1"})
        first = build_auth_headers(auth)
        first["B"] = "2"

        assert build_auth_headers(auth) == {"A": "1"}
        assert build_auth_headers(auth) == build_auth_headers(auth)


class TestBearerClientToken:
    def test_only_bearer_has_token(self):
        assert token_for_bearer_client(BearerAuth(token="tok")) == "tok"
        assert token_for_bearer_client(ApiKeyAuth("X-Key", "v")) == ""
        assert token_for_bearer_client(CustomHeadersAuth({"A": "1"})) == ""
        assert token_for_bearer_client(NoAuth()) == ""
        assert token_for_bearer_client() == ""

    def test_needs_custom_headers(self):
        assert auth_needs_custom_headers(ApiKeyAuth("X-Key", "v"))
        assert auth_needs_custom_headers(CustomHeadersAuth({}))
        assert not auth_needs_custom_headers(BearerAuth("tok"))
        assert not auth_needs_custom_headers(None)


class TestEnsureAuthUsable:
    def test_usable_configs_pass(self):
        ensure_auth_usable(None)
        ensure_auth_usable(NoAuth())
        ensure_auth_usable(BearerAuth(token=""))
        ensure_auth_usable(ApiKeyAuth("X-Key", "v"))
        ensure_auth_usable(CustomHeadersAuth({"A": "1"}))

    def test_blank_api_key_rejected(self):
        with pytest.raises(AuthConfigurationError, match="API key"):
            ensure_auth_usable(ApiKeyAuth(header_name="X-Key"))

    def test_empty_custom_headers_rejected(self):
        with pytest.raises(AuthConfigurationError, match="Custom header"):
            ensure_auth_usable(CustomHeadersAuth())

    def test_is_a_validation_error(self):
        assert issubclass(AuthConfigurationError, RequestValidationError)


class TestAuthConfigDicts:
    def test_parse_each_type(self):
        assert parse_auth_config(None) == NoAuth()
        assert parse_auth_config({"type": "none"}) == NoAuth()
        assert parse_auth_config({"type": "bearer", "token": "t"}) == BearerAuth("t")
        assert parse_auth_config(
            {"type": "apiKey", "apiKeyHeader": "X-Key", "apiKeyValue": "v"}
        ) == ApiKeyAuth("X-Key", "v")
        assert parse_auth_config(
            {"type": "custom", "customHeaders": {"A": "1"}}
        ) == CustomHeadersAuth({"A": "1"})

    def test_unknown_type_is_no_auth(self):
        assert parse_auth_config({"type": "oauth"}) == NoAuth()

    def test_round_trip(self):
        for auth in (
            NoAuth(),
            BearerAuth("t"),
            ApiKeyAuth("X-Key", "v"),
            CustomHeadersAuth({"A": "1"}),
        ):
            assert parse_auth_config(auth_to_dict(auth)) == auth
