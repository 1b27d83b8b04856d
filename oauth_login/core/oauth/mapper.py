"""
User details mappers.

Turn what a provider returned into a `UserDetails` identity:
- `OauthUserDetailsMapper`: plain OAuth 2.0 providers, token response only
- `OpenIdUserDetailsMapper`: OpenID providers, verified claims available
"""

from typing import Any, Dict, Optional, Protocol, Tuple

from oauth_login.core.oauth.models import OpenIdClaims, TokenResponse, UserDetails

# Registered JWT claims that describe the token rather than the user
PROTOCOL_CLAIMS = frozenset({"aud", "exp", "iat", "iss", "jti", "nbf", "nonce", "auth_time", "at_hash", "c_hash", "azp"})

PROVIDER_KEY = "oauth2_provider"


class OauthUserDetailsMapper(Protocol):
    async def create_user_details(self, token_response: TokenResponse) -> UserDetails:
        ...


class OpenIdUserDetailsMapper(Protocol):
    def create_user_details(
        self,
        provider_name: str,
        token_response: TokenResponse,
        claims: OpenIdClaims,
    ) -> UserDetails:
        ...


class DefaultOpenIdUserDetailsMapper:
    """
    Default OpenID mapper.

    The username comes from `username_claim` (falling back to `sub`), roles from
    an optional list claim; every non-protocol claim becomes an attribute along
    with the provider name and the tokens that were issued.
    """

    def __init__(self, username_claim: str = "sub", roles_claim: Optional[str] = None):
        self.username_claim = username_claim
        self.roles_claim = roles_claim

    def create_user_details(
        self,
        provider_name: str,
        token_response: TokenResponse,
        claims: OpenIdClaims,
    ) -> UserDetails:
        username = claims.get(self.username_claim) or claims.subject
        if not username:
            raise ValueError(f"Identity token from {provider_name} carries no '{self.username_claim}' claim")

        return UserDetails(
            username=str(username),
            roles=self._roles(claims),
            attributes=self._attributes(provider_name, token_response, claims),
        )

    def _roles(self, claims: OpenIdClaims) -> Tuple[str, ...]:
        if not self.roles_claim:
            return ()
        roles = claims.get(self.roles_claim) or []
        if isinstance(roles, str):
            roles = roles.split()
        return tuple(str(role) for role in roles)

    def _attributes(
        self,
        provider_name: str,
        token_response: TokenResponse,
        claims: OpenIdClaims,
    ) -> Dict[str, Any]:
        attributes = {k: v for k, v in claims.items() if k not in PROTOCOL_CLAIMS}
        attributes[PROVIDER_KEY] = provider_name
        if token_response.access_token:
            attributes["access_token"] = token_response.access_token
        if token_response.id_token:
            attributes["id_token"] = token_response.id_token
        if token_response.refresh_token:
            attributes["refresh_token"] = token_response.refresh_token
        return attributes
