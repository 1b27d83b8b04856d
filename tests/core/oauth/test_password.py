"""
Tests for the password grant authentication providers.
"""

from __future__ import annotations

import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from jose import jwt

from oauth_login.common.exceptions import ConfigurationException, TokenEndpointException
from oauth_login.core.oauth.config import AuthMethod, EndpointConfig, GrantType, OAuthClientConfig, OpenIdConfig
from oauth_login.core.oauth.discovery import OpenIdProviderMetadata
from oauth_login.core.oauth.mapper import DefaultOpenIdUserDetailsMapper
from oauth_login.core.oauth.models import (
    AuthenticationFailure,
    AuthenticationSuccess,
    FailureReason,
    TokenResponse,
    UserDetails,
)
from oauth_login.core.oauth.password import OauthPasswordAuthenticationProvider, OpenIdPasswordAuthenticationProvider

ISSUER = "https://sso.example.com/realms/main"

PLAIN_CLIENT = OAuthClientConfig(
    name="legacy",
    client_id="legacy-client",
    client_secret="secret",
    grant_type=GrantType.PASSWORD,
    scopes=("profile",),
    token=EndpointConfig(url="https://legacy.example.com/oauth/token", auth_method=AuthMethod.CLIENT_SECRET_POST),
)
OPENID_CLIENT = OAuthClientConfig(
    name="keycloak",
    client_id="web-app",
    client_secret="secret",
    grant_type=GrantType.PASSWORD,
    openid=OpenIdConfig(issuer=ISSUER),
)
METADATA = OpenIdProviderMetadata(issuer=ISSUER, token_endpoint=f"{ISSUER}/token", jwks_uri=f"{ISSUER}/certs")


def _id_token(**claims) -> str:
    now = int(time.time())
    payload = {"iss": ISSUER, "aud": "web-app", "sub": "alice", "iat": now, "exp": now + 300, **claims}
    return jwt.encode(payload, "secret-for-tests", algorithm="HS256")


def _endpoint_client(token_response: TokenResponse | None = None, error: Exception | None = None) -> AsyncMock:
    endpoint_client = AsyncMock()
    endpoint_client.send_request = AsyncMock(return_value=token_response, side_effect=error)
    return endpoint_client


class TestOauthPasswordProvider:
    """Plain OAuth 2.0 token endpoint."""

    @pytest.mark.asyncio
    async def test_success(self):
        endpoint_client = _endpoint_client(TokenResponse(access_token="at"))
        mapper = AsyncMock()
        mapper.create_user_details = AsyncMock(return_value=UserDetails(username="alice"))
        provider = OauthPasswordAuthenticationProvider(endpoint_client, PLAIN_CLIENT, mapper)

        result = await provider.authenticate("alice", "pw")

        assert isinstance(result, AuthenticationSuccess)
        assert result.user.username == "alice"
        context = endpoint_client.send_request.await_args.args[0]
        assert context.endpoint.url == "https://legacy.example.com/oauth/token"
        assert context.form() == {
            "grant_type": "password",
            "username": "alice",
            "password": "pw",
            "scope": "profile",
            "client_id": "legacy-client",
            "client_secret": "secret",
        }

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        endpoint_client = _endpoint_client(error=TokenEndpointException("400", status_code=400, error="invalid_grant"))
        mapper = AsyncMock()
        provider = OauthPasswordAuthenticationProvider(endpoint_client, PLAIN_CLIENT, mapper)

        result = await provider.authenticate("alice", "wrong")

        assert isinstance(result, AuthenticationFailure)
        assert result.reason is FailureReason.TOKEN_ENDPOINT_ERROR
        mapper.create_user_details.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mapper_error(self):
        mapper = AsyncMock()
        mapper.create_user_details = AsyncMock(side_effect=RuntimeError("userinfo down"))
        provider = OauthPasswordAuthenticationProvider(
            _endpoint_client(TokenResponse(access_token="at")), PLAIN_CLIENT, mapper
        )

        result = await provider.authenticate("alice", "pw")

        assert result.reason is FailureReason.USER_DETAILS_ERROR

    def test_requires_token_url(self):
        with pytest.raises(ConfigurationException):
            OauthPasswordAuthenticationProvider(AsyncMock(), OPENID_CLIENT, AsyncMock())


class TestOpenIdPasswordProvider:
    """OpenID provider: token is validated before claims are mapped."""

    def _provider(self, endpoint_client, valid: bool = True, metadata=METADATA, mapper=None):
        validator = AsyncMock()
        validator.validate = AsyncMock(return_value=valid)
        provider = OpenIdPasswordAuthenticationProvider(
            OPENID_CLIENT,
            metadata,
            endpoint_client,
            mapper or DefaultOpenIdUserDetailsMapper(),
            validator,
        )
        return provider, validator

    @pytest.mark.asyncio
    async def test_success(self):
        token = _id_token(email="alice@example.com")
        provider, validator = self._provider(_endpoint_client(TokenResponse(access_token="at", id_token=token)))

        result = await provider.authenticate("alice", "pw")

        assert isinstance(result, AuthenticationSuccess)
        assert result.user.username == "alice"
        assert result.attributes["email"] == "alice@example.com"
        validator.validate.assert_awaited_once_with(OPENID_CLIENT, METADATA, token, None)

    @pytest.mark.asyncio
    async def test_invalid_token_is_not_mapped(self):
        mapper = MagicMock()
        provider, _ = self._provider(_endpoint_client(TokenResponse(id_token=_id_token())), valid=False, mapper=mapper)

        result = await provider.authenticate("alice", "pw")

        assert result.reason is FailureReason.TOKEN_VALIDATION_FAILURE
        mapper.create_user_details.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_id_token(self):
        provider, validator = self._provider(_endpoint_client(TokenResponse(access_token="at")))

        result = await provider.authenticate("alice", "pw")

        assert result.reason is FailureReason.TOKEN_VALIDATION_FAILURE
        validator.validate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_token(self):
        provider, _ = self._provider(_endpoint_client(TokenResponse(id_token="garbage")))

        result = await provider.authenticate("alice", "pw")

        assert result.reason is FailureReason.CLAIMS_PARSE_ERROR

    @pytest.mark.asyncio
    async def test_token_endpoint_error(self):
        provider, _ = self._provider(_endpoint_client(error=TokenEndpointException("down")))

        result = await provider.authenticate("alice", "pw")

        assert result.reason is FailureReason.TOKEN_ENDPOINT_ERROR

    @pytest.mark.asyncio
    async def test_no_token_endpoint(self):
        endpoint_client = _endpoint_client()
        provider, _ = self._provider(endpoint_client, metadata=OpenIdProviderMetadata(issuer=ISSUER))

        result = await provider.authenticate("alice", "pw")

        assert result.reason is FailureReason.TOKEN_ENDPOINT_ERROR
        endpoint_client.send_request.assert_not_awaited()
