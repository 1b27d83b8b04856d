"""
Tests for identity token validation.

The JWKS is served by an httpx.MockTransport holding a symmetric (oct) key so
tokens can be signed in the test with python-jose.
"""

from __future__ import annotations

import base64
import time
from unittest.mock import AsyncMock

import httpx
import pytest
from jose import jwt

from oauth_login.core.oauth.config import OAuthClientConfig, OpenIdConfig
from oauth_login.core.oauth.discovery import OpenIdProviderMetadata
from oauth_login.core.oauth.validation import (
    JwksTokenResponseValidator,
    TokenResponseValidatorResolver,
    nonce_matches,
)

ISSUER = "https://sso.example.com/realms/main"
JWKS_URI = f"{ISSUER}/certs"
SECRET = "test-signing-secret-0123456789"

CLIENT = OAuthClientConfig(name="keycloak", client_id="web-app", openid=OpenIdConfig(issuer=ISSUER))
METADATA = OpenIdProviderMetadata(issuer=ISSUER, jwks_uri=JWKS_URI, id_token_signing_alg_values_supported=["HS256"])


def _token(secret: str = SECRET, **claims) -> str:
    now = int(time.time())
    payload = {"iss": ISSUER, "aud": "web-app", "sub": "user-1", "iat": now, "exp": now + 300}
    payload.update(claims)
    return jwt.encode({k: v for k, v in payload.items() if v is not None}, secret, algorithm="HS256")


def _b64(secret: str) -> str:
    return base64.urlsafe_b64encode(secret.encode()).rstrip(b"=").decode()


class _JwksServer:
    """Serves the JWKS and counts requests."""

    def __init__(self, status_code: int = 200, body=None):
        self.status_code = status_code
        self.body = body if body is not None else {"keys": [{"kty": "oct", "k": _b64(SECRET), "alg": "HS256"}]}
        self.requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        return httpx.Response(self.status_code, json=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class TestNonceRule:
    """Exact string equality when a nonce was sent."""

    def test_no_nonce_sent(self):
        assert nonce_matches({"nonce": "whatever"}, None)
        assert nonce_matches({}, None)

    def test_matching(self):
        assert nonce_matches({"nonce": "n-1"}, "n-1")

    def test_mismatch(self):
        assert not nonce_matches({"nonce": "n-2"}, "n-1")

    def test_missing_in_token(self):
        assert not nonce_matches({}, "n-1")


class TestJwksValidator:
    """Signature, issuer, audience, expiry, subject and nonce checks."""

    @pytest.mark.asyncio
    async def test_valid_token(self):
        server = _JwksServer()
        async with server.client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert await validator.validate(CLIENT, METADATA, _token(nonce="n-1"), "n-1")

    @pytest.mark.asyncio
    async def test_nonce_mismatch(self):
        async with _JwksServer().client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, METADATA, _token(nonce="n-2"), "n-1")

    @pytest.mark.asyncio
    async def test_missing_nonce_when_one_was_sent(self):
        async with _JwksServer().client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, METADATA, _token(), "n-1")

    @pytest.mark.asyncio
    async def test_wrong_signature(self):
        async with _JwksServer().client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, METADATA, _token(secret="another-secret-value"), None)

    @pytest.mark.asyncio
    async def test_wrong_audience(self):
        async with _JwksServer().client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, METADATA, _token(aud="someone-else"), None)

    @pytest.mark.asyncio
    async def test_wrong_issuer(self):
        async with _JwksServer().client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, METADATA, _token(iss="https://evil.example.com"), None)

    @pytest.mark.asyncio
    async def test_expired(self):
        past = int(time.time()) - 3600
        async with _JwksServer().client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, METADATA, _token(iat=past - 60, exp=past), None)

    @pytest.mark.asyncio
    async def test_missing_subject(self):
        async with _JwksServer().client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, METADATA, _token(sub=None), None)

    @pytest.mark.asyncio
    async def test_algorithm_not_advertised(self):
        metadata = OpenIdProviderMetadata(issuer=ISSUER, jwks_uri=JWKS_URI)
        async with _JwksServer().client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, metadata, _token(), None)

    @pytest.mark.asyncio
    async def test_no_jwks_uri(self):
        server = _JwksServer()
        async with server.client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            metadata = OpenIdProviderMetadata(issuer=ISSUER)
            assert not await validator.validate(CLIENT, metadata, _token(), None)
        assert server.requests == 0

    @pytest.mark.asyncio
    async def test_jwks_unavailable(self):
        async with _JwksServer(status_code=503, body={"error": "down"}).client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, METADATA, _token(), None)

    @pytest.mark.asyncio
    async def test_not_a_key_set(self):
        async with _JwksServer(body={"issuer": ISSUER}).client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert not await validator.validate(CLIENT, METADATA, _token(), None)

    @pytest.mark.asyncio
    async def test_key_set_is_cached(self):
        server = _JwksServer()
        async with server.client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert await validator.validate(CLIENT, METADATA, _token(), None)
            assert await validator.validate(CLIENT, METADATA, _token(), None)
        assert server.requests == 1

    @pytest.mark.asyncio
    async def test_rotated_signing_key_is_fetched(self):
        rotated = "rotated-signing-secret-9876543210"
        server = _JwksServer()
        async with server.client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert await validator.validate(CLIENT, METADATA, _token(), None)

            server.body = {"keys": [{"kty": "oct", "k": _b64(rotated), "alg": "HS256"}]}
            assert await validator.validate(CLIENT, METADATA, _token(secret=rotated), None)
            assert await validator.validate(CLIENT, METADATA, _token(secret=rotated), None)
        assert server.requests == 2

    @pytest.mark.asyncio
    async def test_unknown_key_id_triggers_refresh(self):
        server = _JwksServer(body={"keys": [{"kty": "oct", "k": _b64(SECRET), "alg": "HS256", "kid": "old"}]})
        async with server.client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            await validator._get_key_set(JWKS_URI)

            server.body = {"keys": [{"kty": "oct", "k": _b64(SECRET), "alg": "HS256", "kid": "new"}]}
            token = jwt.encode(
                {"iss": ISSUER, "aud": "web-app", "sub": "user-1", "exp": int(time.time()) + 300},
                SECRET,
                algorithm="HS256",
                headers={"kid": "new"},
            )
            assert await validator.validate(CLIENT, METADATA, token, None)
        assert server.requests == 2

    @pytest.mark.asyncio
    async def test_forged_signature_refreshes_once_and_is_rejected(self):
        server = _JwksServer()
        async with server.client() as http_client:
            validator = JwksTokenResponseValidator(http_client)
            assert await validator.validate(CLIENT, METADATA, _token(), None)
            assert not await validator.validate(CLIENT, METADATA, _token(secret="another-secret-value"), None)
        assert server.requests == 2


class TestValidatorResolver:
    """Named validators win over the default one."""

    def test_named_wins(self):
        default, named = AsyncMock(), AsyncMock()
        resolver = TokenResponseValidatorResolver(default=default, named={"keycloak": named})

        assert resolver.resolve(CLIENT) is named

    def test_default(self):
        default = AsyncMock()
        resolver = TokenResponseValidatorResolver(default=default, named={"other": AsyncMock()})

        assert resolver.resolve(CLIENT) is default

    def test_none(self):
        assert TokenResponseValidatorResolver().resolve(CLIENT) is None
