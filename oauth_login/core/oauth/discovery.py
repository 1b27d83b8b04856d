"""
OpenID Connect discovery.

Fetches and caches the provider metadata document
(``{issuer}/.well-known/openid-configuration``).
"""

from typing import Dict, List, Optional

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from oauth_login.common.exceptions import ProviderDiscoveryException
from oauth_login.core.oauth.config import AuthMethod, OpenIdConfig
from oauth_login.core.oauth.models import SecureEndpoint

LOG_PREFIX = "[OIDCDiscovery]"


class OpenIdProviderMetadata(BaseModel):
    """OpenID Provider Metadata (OpenID Connect Discovery 1.0, section 3)."""

    model_config = ConfigDict(extra="allow", frozen=True)

    issuer: str
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None
    jwks_uri: Optional[str] = None
    scopes_supported: Optional[List[str]] = None
    response_types_supported: Optional[List[str]] = None
    token_endpoint_auth_methods_supported: Optional[List[str]] = None
    id_token_signing_alg_values_supported: Optional[List[str]] = None

    def token_endpoint_ref(self, openid: Optional[OpenIdConfig] = None) -> Optional[SecureEndpoint]:
        """Token endpoint to use for this provider, honouring a configured override."""
        url = self.token_endpoint
        if openid and openid.token and openid.token.url:
            url = openid.token.url
        if not url:
            return None
        methods = []
        for method in self.token_endpoint_auth_methods_supported or []:
            try:
                methods.append(AuthMethod(method))
            except ValueError:
                # private_key_jwt and friends are not supported by this client
                continue
        return SecureEndpoint(url=url, supported_auth_methods=tuple(methods) or (AuthMethod.CLIENT_SECRET_BASIC,))


class OpenIdDiscoveryClient:
    """Fetches provider metadata, caching one document per discovery URL."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._http_client = http_client
        self._timeout = timeout
        self._cache: Dict[str, OpenIdProviderMetadata] = {}

    async def fetch(self, openid: OpenIdConfig) -> OpenIdProviderMetadata:
        """
        Fetch the metadata document for an OpenID config block.

        Raises:
            ProviderDiscoveryException: no issuer, HTTP failure or invalid document
        """
        discovery_url = openid.discovery_url
        if not discovery_url:
            raise ProviderDiscoveryException("OpenID configuration has no issuer")

        if discovery_url in self._cache:
            return self._cache[discovery_url]

        try:
            if self._http_client is not None:
                response = await self._http_client.get(discovery_url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(discovery_url)
            response.raise_for_status()
            metadata = OpenIdProviderMetadata.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.error(f"{LOG_PREFIX} OIDC Discovery failed for {discovery_url}: {e}")
            raise ProviderDiscoveryException(f"Discovery failed for {discovery_url}") from e

        self._cache[discovery_url] = metadata
        logger.info(f"{LOG_PREFIX} OIDC Discovery successful: {metadata.issuer}")
        return metadata
