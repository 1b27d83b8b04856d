"""
Password grant authentication providers.

Both providers exchange a username and password at a token endpoint and map
the result to a `UserDetails`. Neither raises: every failure is returned as an
`AuthenticationFailure`.
"""

from typing import Optional

from loguru import logger

from oauth_login.common.exceptions import ClaimsParseException, ConfigurationException
from oauth_login.core.oauth.config import OAuthClientConfig
from oauth_login.core.oauth.discovery import OpenIdProviderMetadata
from oauth_login.core.oauth.endpoint import TokenEndpointClient
from oauth_login.core.oauth.mapper import OauthUserDetailsMapper, OpenIdUserDetailsMapper
from oauth_login.core.oauth.models import (
    AuthenticationFailure,
    AuthenticationResult,
    AuthenticationSuccess,
    FailureReason,
    OpenIdClaims,
    SecureEndpoint,
    TokenRequestContext,
    TokenResponse,
)
from oauth_login.core.oauth.validation import TokenResponseValidator

LOG_PREFIX = "[PasswordGrant]"


def _plain_token_endpoint(client: OAuthClientConfig) -> SecureEndpoint:
    if client.token is None or not client.token.url:
        raise ConfigurationException(f"Provider {client.name} has no token endpoint url")
    if client.token.auth_method:
        return SecureEndpoint(url=client.token.url, supported_auth_methods=(client.token.auth_method,))
    return SecureEndpoint(url=client.token.url)


async def _exchange(
    token_endpoint_client: TokenEndpointClient,
    context: TokenRequestContext,
) -> Optional[TokenResponse]:
    """Run the password grant; None when the token endpoint rejected it."""
    try:
        return await token_endpoint_client.send_request(context)
    except Exception as e:
        logger.warning(f"{LOG_PREFIX} Password grant with [{context.client.name}] failed: {type(e).__name__}: {e}")
        return None


class OauthPasswordAuthenticationProvider:
    """Password grant against a plain OAuth 2.0 token endpoint."""

    def __init__(
        self,
        token_endpoint_client: TokenEndpointClient,
        client: OAuthClientConfig,
        user_details_mapper: OauthUserDetailsMapper,
    ):
        self.client = client
        self._token_endpoint_client = token_endpoint_client
        self._user_details_mapper = user_details_mapper
        self._endpoint = _plain_token_endpoint(client)

    async def authenticate(self, username: str, password: str) -> AuthenticationResult:
        context = TokenRequestContext.password(username, password, self._endpoint, self.client)
        token_response = await _exchange(self._token_endpoint_client, context)
        if token_response is None:
            return AuthenticationFailure(FailureReason.TOKEN_ENDPOINT_ERROR, "Token exchange failed")

        try:
            user = await self._user_details_mapper.create_user_details(token_response)
        except Exception as e:
            logger.error(f"{LOG_PREFIX} User details mapping for [{self.client.name}] failed: {e}")
            return AuthenticationFailure(FailureReason.USER_DETAILS_ERROR, "User details mapping failed")
        return AuthenticationSuccess(user=user)


class OpenIdPasswordAuthenticationProvider:
    """Password grant against an OpenID provider, validating the identity token."""

    def __init__(
        self,
        client: OAuthClientConfig,
        metadata: OpenIdProviderMetadata,
        token_endpoint_client: TokenEndpointClient,
        user_details_mapper: OpenIdUserDetailsMapper,
        token_response_validator: TokenResponseValidator,
    ):
        self.client = client
        self.metadata = metadata
        self._token_endpoint_client = token_endpoint_client
        self._user_details_mapper = user_details_mapper
        self._token_response_validator = token_response_validator

    @property
    def _endpoint(self) -> Optional[SecureEndpoint]:
        return self.metadata.token_endpoint_ref(self.client.openid)

    async def authenticate(self, username: str, password: str) -> AuthenticationResult:
        endpoint = self._endpoint
        if endpoint is None:
            logger.error(f"{LOG_PREFIX} Provider [{self.client.name}] metadata has no token endpoint")
            return AuthenticationFailure(FailureReason.TOKEN_ENDPOINT_ERROR, "No token endpoint")

        context = TokenRequestContext.password(username, password, endpoint, self.client)
        token_response = await _exchange(self._token_endpoint_client, context)
        if token_response is None:
            return AuthenticationFailure(FailureReason.TOKEN_ENDPOINT_ERROR, "Token exchange failed")

        token = token_response.id_token
        if not token:
            return AuthenticationFailure(FailureReason.TOKEN_VALIDATION_FAILURE, "No identity token")

        try:
            valid = await self._token_response_validator.validate(self.client, self.metadata, token, None)
        except Exception as e:
            logger.error(f"{LOG_PREFIX} Token validation for [{self.client.name}] raised: {e}")
            valid = False
        if not valid:
            return AuthenticationFailure(FailureReason.TOKEN_VALIDATION_FAILURE, "Token validation failed")

        try:
            claims = OpenIdClaims.from_token(token)
        except ClaimsParseException as e:
            logger.error(f"{LOG_PREFIX} Failed to parse validated identity token from [{self.client.name}]: {e}")
            return AuthenticationFailure(FailureReason.CLAIMS_PARSE_ERROR, "Malformed identity token")

        try:
            user = self._user_details_mapper.create_user_details(self.client.name, token_response, claims)
        except Exception as e:
            logger.error(f"{LOG_PREFIX} User details mapping for [{self.client.name}] failed: {e}")
            return AuthenticationFailure(FailureReason.USER_DETAILS_ERROR, "User details mapping failed")
        return AuthenticationSuccess(user=user)
