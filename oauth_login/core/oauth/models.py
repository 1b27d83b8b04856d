"""
Value types flowing through the authorization pipeline.

All of them are immutable once constructed. Claims are only ever built from a
token that already passed the token response validator.
"""

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict

from oauth_login.common.exceptions import ClaimsParseException
from oauth_login.core.oauth.config import AuthMethod, GrantType, OAuthClientConfig


@dataclass(frozen=True)
class AuthorizationResponse:
    """Parameters the provider sent back to the callback route."""

    code: str
    state: Optional[str]
    nonce: Optional[str]
    callback_request: Any  # Starlette Request, kept for the state validator
    redirect_uri: Optional[str] = None


@dataclass(frozen=True)
class SecureEndpoint:
    """A token endpoint together with the client auth methods it accepts."""

    url: str
    supported_auth_methods: Tuple[AuthMethod, ...] = (AuthMethod.CLIENT_SECRET_BASIC,)


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 section 5.1 plus id_token)."""

    model_config = ConfigDict(extra="allow", frozen=True)

    access_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None


@dataclass(frozen=True)
class TokenRequestContext:
    """
    One token endpoint exchange.

    Built by the caller that performs the exchange and discarded afterwards.
    """

    grant_type: GrantType
    endpoint: SecureEndpoint
    client: OAuthClientConfig
    grant: Mapping[str, str]

    @classmethod
    def authorization_code(
        cls,
        response: AuthorizationResponse,
        endpoint: SecureEndpoint,
        client: OAuthClientConfig,
    ) -> "TokenRequestContext":
        grant = {"code": response.code}
        if response.redirect_uri:
            grant["redirect_uri"] = response.redirect_uri
        return cls(
            grant_type=GrantType.AUTHORIZATION_CODE,
            endpoint=endpoint,
            client=client,
            grant=MappingProxyType(grant),
        )

    @classmethod
    def password(
        cls,
        username: str,
        password: str,
        endpoint: SecureEndpoint,
        client: OAuthClientConfig,
    ) -> "TokenRequestContext":
        grant = {"username": username, "password": password}
        if client.scopes:
            grant["scope"] = " ".join(client.scopes)
        return cls(
            grant_type=GrantType.PASSWORD,
            endpoint=endpoint,
            client=client,
            grant=MappingProxyType(grant),
        )

    @property
    def auth_method(self) -> AuthMethod:
        """Client authentication method for this exchange.

        An explicitly configured method wins; otherwise basic auth is used when
        the endpoint accepts it, then the first method the endpoint lists.
        """
        configured = self.client.token.auth_method if self.client.token else None
        if configured is None and self.client.openid and self.client.openid.token:
            configured = self.client.openid.token.auth_method
        if configured is not None:
            return configured
        if not self.client.client_secret:
            return AuthMethod.NONE
        supported = self.endpoint.supported_auth_methods
        if not supported or AuthMethod.CLIENT_SECRET_BASIC in supported:
            return AuthMethod.CLIENT_SECRET_BASIC
        return supported[0]

    def form(self) -> Dict[str, str]:
        """Form body of the token request."""
        data = {"grant_type": self.grant_type.value, **self.grant}
        method = self.auth_method
        if method is AuthMethod.CLIENT_SECRET_POST:
            data["client_id"] = self.client.client_id
            data["client_secret"] = self.client.client_secret or ""
        elif method is AuthMethod.NONE:
            data["client_id"] = self.client.client_id
        return data

    def headers(self) -> Dict[str, str]:
        """HTTP headers of the token request."""
        headers = {"Accept": "application/json"}
        if self.auth_method is AuthMethod.CLIENT_SECRET_BASIC:
            credentials = base64.b64encode(
                f"{self.client.client_id}:{self.client.client_secret or ''}".encode()
            ).decode()
            headers["Authorization"] = f"Basic {credentials}"
        return headers


class OpenIdClaims(Mapping[str, Any]):
    """Read-only view over a verified identity token payload."""

    def __init__(self, claims: Mapping[str, Any]):
        self._claims = MappingProxyType(dict(claims))

    @classmethod
    def from_token(cls, token: str) -> "OpenIdClaims":
        """
        Parse the payload of an already validated identity token.

        Raises:
            ClaimsParseException: the token is not a well formed JWT
        """
        try:
            return cls(jwt.get_unverified_claims(token))
        except JWTError as e:
            raise ClaimsParseException(str(e)) from e

    def __getitem__(self, key: str) -> Any:
        return self._claims[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._claims)

    def __len__(self) -> int:
        return len(self._claims)

    def __repr__(self) -> str:
        return f"OpenIdClaims(sub={self.subject!r}, iss={self.issuer!r})"

    @property
    def subject(self) -> Optional[str]:
        return self._claims.get("sub")

    @property
    def issuer(self) -> Optional[str]:
        return self._claims.get("iss")

    @property
    def audience(self) -> List[str]:
        aud = self._claims.get("aud")
        if aud is None:
            return []
        return [aud] if isinstance(aud, str) else list(aud)

    @property
    def expiration(self) -> Optional[datetime]:
        exp = self._claims.get("exp")
        return datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None

    @property
    def nonce(self) -> Optional[str]:
        return self._claims.get("nonce")

    @property
    def email(self) -> Optional[str]:
        return self._claims.get("email")

    @property
    def name(self) -> Optional[str]:
        return self._claims.get("name")

    @property
    def preferred_username(self) -> Optional[str]:
        return self._claims.get("preferred_username")


@dataclass(frozen=True)
class UserDetails:
    """An authenticated identity."""

    username: str
    roles: Tuple[str, ...] = ()
    attributes: Mapping[str, Any] = field(default_factory=dict)


class FailureReason(str, Enum):
    """Why an authentication attempt failed."""

    VALIDATOR_UNAVAILABLE = "validator_unavailable"
    INVALID_STATE = "invalid_state"
    TOKEN_ENDPOINT_ERROR = "token_endpoint_error"
    TOKEN_VALIDATION_FAILURE = "token_validation_failure"
    CLAIMS_PARSE_ERROR = "claims_parse_error"
    USER_DETAILS_ERROR = "user_details_error"
    AUTHORIZATION_ERROR = "authorization_error"


@dataclass(frozen=True)
class AuthenticationSuccess:
    user: UserDetails

    authenticated = True

    @property
    def attributes(self) -> Mapping[str, Any]:
        return self.user.attributes


@dataclass(frozen=True)
class AuthenticationFailure:
    reason: FailureReason
    message: Optional[str] = None

    authenticated = False


AuthenticationResult = Union[AuthenticationSuccess, AuthenticationFailure]
