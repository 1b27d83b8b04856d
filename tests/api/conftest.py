"""
Fixtures for the HTTP layer: an in-memory identity provider served through
httpx.MockTransport and an application wired against it.
"""

from __future__ import annotations

import base64
import time
from typing import Dict, List
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient
from jose import jwt

from oauth_login.core.events import EventPublisher, LoginFailedEvent, LoginSuccessfulEvent
from oauth_login.core.oauth.config import OAuthConfigLoader
from oauth_login.main import create_app

ISSUER = "https://sso.example.com/realms/main"
# Separate realm so the password provider has its own discovery document
STAFF_ISSUER = "https://sso.example.com/realms/staff"
CLIENT_ID = "web-app"
SIGNING_SECRET = "test-signing-secret-0123456789"
NONCE = "n-0S6_WzA2Mj"
STATE = "af0ifjsldkj"

PROVIDERS = {
    "providers": {
        "keycloak": {
            "display_name": "Keycloak",
            "client_id": CLIENT_ID,
            "client_secret": "s3cret",
            "openid": {"issuer": ISSUER},
        },
        "kc-password": {
            "display_name": "Keycloak (password)",
            "grant_type": "password",
            "client_id": CLIENT_ID,
            "client_secret": "s3cret",
            "openid": {"issuer": STAFF_ISSUER},
        },
        "retired": {
            "enabled": False,
            "client_id": "old",
            "openid": {"issuer": ISSUER},
        },
    }
}


class FakeIdentityProvider:
    """Discovery documents, JWKS and token endpoint; all realms share one signing key."""

    def __init__(self):
        self.discovery_status = 200
        self.token_requests: List[Dict[str, str]] = []
        self.id_token_claims: Dict[str, object] = {"sub": "alice", "nonce": NONCE, "email": "alice@example.com"}

    def id_token(self) -> str:
        now = int(time.time())
        payload = {"iss": ISSUER, "aud": CLIENT_ID, "iat": now, "exp": now + 300, **self.id_token_claims}
        return jwt.encode(payload, SIGNING_SECRET, algorithm="HS256")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/.well-known/openid-configuration"):
            if self.discovery_status != 200:
                return httpx.Response(self.discovery_status)
            return httpx.Response(
                200,
                json={
                    "issuer": ISSUER,
                    "authorization_endpoint": f"{ISSUER}/protocol/openid-connect/auth",
                    "token_endpoint": f"{ISSUER}/protocol/openid-connect/token",
                    "jwks_uri": f"{ISSUER}/protocol/openid-connect/certs",
                    "id_token_signing_alg_values_supported": ["HS256"],
                },
            )
        if path.endswith("/certs"):
            k = base64.urlsafe_b64encode(SIGNING_SECRET.encode()).rstrip(b"=").decode()
            return httpx.Response(200, json={"keys": [{"kty": "oct", "k": k, "alg": "HS256"}]})
        if path.endswith("/token"):
            form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
            self.token_requests.append(form)
            if form.get("grant_type") == "password" and form.get("password") != "correct-horse":
                return httpx.Response(401, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "at", "token_type": "Bearer", "id_token": self.id_token()})
        return httpx.Response(404)


class FakeRedirectHandler:
    """Records state and nonce in cookies and redirects to the provider."""

    async def redirect(self, client, metadata, request):
        response = RedirectResponse(
            f"{metadata.authorization_endpoint}?client_id={client.client_id}&state={STATE}&nonce={NONCE}",
            status_code=302,
        )
        response.set_cookie("OAUTH2_STATE", STATE)
        response.set_cookie("OPENID_NONCE", NONCE)
        return response


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def events() -> Dict[str, list]:
    return {"success": [], "failure": []}


@pytest.fixture
def app(identity_provider: FakeIdentityProvider, events: Dict[str, list]):
    loader = OAuthConfigLoader("/nonexistent/oauth_providers.yaml")
    loader.load_dict(PROVIDERS)

    publisher = EventPublisher()
    publisher.subscribe(LoginSuccessfulEvent, events["success"].append)
    publisher.subscribe(LoginFailedEvent, events["failure"].append)

    return create_app(
        FakeRedirectHandler(),
        loader,
        event_publisher=publisher,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(identity_provider)),
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
