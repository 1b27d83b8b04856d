"""
Tests for token request building and the httpx token endpoint client.
"""

from __future__ import annotations

import base64
from urllib.parse import parse_qs

import httpx
import pytest

from oauth_login.common.exceptions import TokenEndpointException
from oauth_login.core.oauth.config import AuthMethod, EndpointConfig, OAuthClientConfig, OpenIdConfig
from oauth_login.core.oauth.endpoint import HttpxTokenEndpointClient
from oauth_login.core.oauth.models import AuthorizationResponse, SecureEndpoint, TokenRequestContext

TOKEN_URL = "https://sso.example.com/token"

CLIENT = OAuthClientConfig(name="kc", client_id="web-app", client_secret="s3cret", scopes=("openid", "email"))


def _code_context(
    client: OAuthClientConfig = CLIENT,
    endpoint: SecureEndpoint | None = None,
) -> TokenRequestContext:
    response = AuthorizationResponse(
        code="code-1", state="s", nonce=None, callback_request=None, redirect_uri="https://app/cb"
    )
    return TokenRequestContext.authorization_code(response, endpoint or SecureEndpoint(url=TOKEN_URL), client)


class TestTokenRequestContext:
    """Form body, headers and client authentication method."""

    def test_authorization_code_form_with_basic_auth(self):
        context = _code_context()

        assert context.auth_method is AuthMethod.CLIENT_SECRET_BASIC
        assert context.form() == {"grant_type": "authorization_code", "code": "code-1", "redirect_uri": "https://app/cb"}
        expected = base64.b64encode(b"web-app:s3cret").decode()
        assert context.headers()["Authorization"] == f"Basic {expected}"
        assert context.headers()["Accept"] == "application/json"

    def test_post_auth_when_endpoint_only_supports_post(self):
        context = _code_context(
            endpoint=SecureEndpoint(url=TOKEN_URL, supported_auth_methods=(AuthMethod.CLIENT_SECRET_POST,))
        )

        assert context.auth_method is AuthMethod.CLIENT_SECRET_POST
        assert context.form()["client_id"] == "web-app"
        assert context.form()["client_secret"] == "s3cret"
        assert "Authorization" not in context.headers()

    def test_configured_method_wins(self):
        client = OAuthClientConfig(
            name="kc",
            client_id="web-app",
            client_secret="s3cret",
            openid=OpenIdConfig(issuer="https://sso", token=EndpointConfig(auth_method=AuthMethod.CLIENT_SECRET_POST)),
        )

        assert _code_context(client).auth_method is AuthMethod.CLIENT_SECRET_POST

    def test_public_client(self):
        client = OAuthClientConfig(name="spa", client_id="spa-app")
        context = _code_context(client)

        assert context.auth_method is AuthMethod.NONE
        assert context.form()["client_id"] == "spa-app"
        assert "client_secret" not in context.form()
        assert "Authorization" not in context.headers()

    def test_password_form(self):
        context = TokenRequestContext.password("alice", "pw", SecureEndpoint(url=TOKEN_URL), CLIENT)

        assert context.form() == {
            "grant_type": "password",
            "username": "alice",
            "password": "pw",
            "scope": "openid email",
        }


class TestHttpxTokenEndpointClient:
    """POSTs the request and parses the token response."""

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def serve(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["form"] = parse_qs(request.content.decode())
            seen["authorization"] = request.headers.get("authorization")
            return httpx.Response(200, json={"access_token": "at", "token_type": "Bearer", "id_token": "idt"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(serve)) as http_client:
            token_response = await HttpxTokenEndpointClient(http_client).send_request(_code_context())

        assert token_response.access_token == "at"
        assert token_response.id_token == "idt"
        assert seen["method"] == "POST"
        assert seen["form"]["code"] == ["code-1"]
        assert seen["authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_form_encoded_response(self):
        def serve(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=b"access_token=at&token_type=bearer",
                headers={"content-type": "application/x-www-form-urlencoded"},
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(serve)) as http_client:
            token_response = await HttpxTokenEndpointClient(http_client).send_request(_code_context())

        assert token_response.access_token == "at"
        assert token_response.id_token is None

    @pytest.mark.asyncio
    async def test_error_response(self):
        def serve(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(serve)) as http_client:
            with pytest.raises(TokenEndpointException) as exc_info:
                await HttpxTokenEndpointClient(http_client).send_request(_code_context())

        assert exc_info.value.status_code == 400
        assert exc_info.value.error == "invalid_grant"

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def serve(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(serve)) as http_client:
            with pytest.raises(TokenEndpointException):
                await HttpxTokenEndpointClient(http_client).send_request(_code_context())
