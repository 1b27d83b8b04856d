"""
Identity token validation.

`TokenResponseValidator` implementations decide whether an identity token may
be trusted. The default implementation delegates signature verification to
python-jose against the provider's JWKS and then checks the nonce.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol

import httpx
from jose import jws, jwt
from jose.exceptions import JOSEError, JWKError, JWSError
from loguru import logger

from oauth_login.core.oauth.config import OAuthClientConfig
from oauth_login.core.oauth.discovery import OpenIdProviderMetadata

LOG_PREFIX = "[TokenValidator]"

DEFAULT_ALGORITHMS = ["RS256"]


class TokenResponseValidator(Protocol):
    async def validate(
        self,
        client: OAuthClientConfig,
        metadata: OpenIdProviderMetadata,
        token: str,
        nonce: Optional[str],
    ) -> bool:
        ...


class TokenResponseValidatorResolver:
    """
    Picks the validator for a provider.

    A validator registered under the provider name wins over the default one.
    `resolve` returns None when neither exists.
    """

    def __init__(
        self,
        default: Optional[TokenResponseValidator] = None,
        named: Optional[Mapping[str, TokenResponseValidator]] = None,
    ):
        self._default = default
        self._named = dict(named or {})

    def resolve(self, client: OAuthClientConfig) -> Optional[TokenResponseValidator]:
        return self._named.get(client.name, self._default)


def nonce_matches(claims: Mapping[str, Any], nonce: Optional[str]) -> bool:
    """
    Nonce rule for identity tokens.

    When a nonce was sent with the authorization request the token must carry
    exactly the same value. Without a sent nonce there is nothing to bind.
    """
    if nonce is None:
        return True
    token_nonce = claims.get("nonce")
    if token_nonce is None:
        return False
    return token_nonce == nonce


def _signing_key_missing(token: str, key_set: Mapping[str, Any], algorithms: List[str]) -> bool:
    """
    True when no key of the cached set verifies the token signature.

    The provider may have rotated its signing key since the set was fetched.
    Tokens that are malformed or use an algorithm outside `algorithms` are
    left for `jwt.decode` to reject.
    """
    try:
        header = jwt.get_unverified_header(token)
    except JOSEError:
        return False
    if header.get("alg") not in algorithms:
        return False

    kid = header.get("kid")
    if kid and kid not in {key.get("kid") for key in key_set.get("keys", [])}:
        return True

    try:
        jws.verify(token, key_set, algorithms)
    except (JWSError, JWKError):
        return True
    return False


class JwksTokenResponseValidator:
    """Validates identity tokens against the provider JWKS with python-jose."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._http_client = http_client
        self._timeout = timeout
        self._key_sets: Dict[str, Dict[str, Any]] = {}

    async def validate(
        self,
        client: OAuthClientConfig,
        metadata: OpenIdProviderMetadata,
        token: str,
        nonce: Optional[str],
    ) -> bool:
        if not metadata.jwks_uri:
            logger.error(f"{LOG_PREFIX} Provider {client.name} metadata has no jwks_uri")
            return False

        algorithms = metadata.id_token_signing_alg_values_supported or DEFAULT_ALGORITHMS
        try:
            key_set = await self._get_key_set(metadata.jwks_uri)
            if _signing_key_missing(token, key_set, algorithms):
                logger.info(f"{LOG_PREFIX} Signing key for {client.name} not in cached JWKS, refreshing")
                key_set = await self._get_key_set(metadata.jwks_uri, refresh=True)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{LOG_PREFIX} Failed to fetch JWKS for {client.name}: {e}")
            return False

        try:
            claims = jwt.decode(
                token,
                key_set,
                algorithms=algorithms,
                audience=client.client_id,
                issuer=metadata.issuer,
                options={"verify_at_hash": False},
            )
        except JOSEError as e:
            logger.warning(f"{LOG_PREFIX} Identity token rejected for {client.name}: {e}")
            return False

        if not claims.get("sub"):
            logger.warning(f"{LOG_PREFIX} Identity token for {client.name} has no subject")
            return False

        if not nonce_matches(claims, nonce):
            logger.warning(f"{LOG_PREFIX} Nonce mismatch in identity token for {client.name}")
            return False

        return True

    async def _get_key_set(self, jwks_uri: str, refresh: bool = False) -> Dict[str, Any]:
        if not refresh and jwks_uri in self._key_sets:
            return self._key_sets[jwks_uri]

        if self._http_client is not None:
            response = await self._http_client.get(jwks_uri, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as http:
                response = await http.get(jwks_uri)
        response.raise_for_status()
        key_set = response.json()
        if not isinstance(key_set, dict) or "keys" not in key_set:
            raise ValueError(f"{jwks_uri} did not return a JSON Web Key Set")

        self._key_sets[jwks_uri] = key_set
        logger.debug(f"{LOG_PREFIX} Cached {len(key_set['keys'])} keys from {jwks_uri}")
        return key_set
