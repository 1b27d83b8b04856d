"""
Authorization response handler.

Completes an OpenID Connect authorization code flow for one callback:

1. resolve the token response validator for the provider
2. check the returned state (when a state validator is configured)
3. exchange the code at the token endpoint
4. validate the identity token
5. parse the claims and map them to a `UserDetails`

Each step either returns its value or raises `_StepFailed`; `handle` turns the
first failure into an `AuthenticationFailure` and never raises to its caller.
Cancellation is not a failure: `asyncio.CancelledError` propagates out of the
pending await and no later step runs.
"""

from typing import Optional

from loguru import logger

from oauth_login.common.exceptions import ClaimsParseException, InvalidStateException
from oauth_login.core.oauth.config import OAuthClientConfig
from oauth_login.core.oauth.discovery import OpenIdProviderMetadata
from oauth_login.core.oauth.endpoint import TokenEndpointClient
from oauth_login.core.oauth.mapper import OpenIdUserDetailsMapper
from oauth_login.core.oauth.models import (
    AuthenticationFailure,
    AuthenticationResult,
    AuthenticationSuccess,
    AuthorizationResponse,
    FailureReason,
    OpenIdClaims,
    SecureEndpoint,
    TokenRequestContext,
    TokenResponse,
    UserDetails,
)
from oauth_login.core.oauth.state import StateValidator
from oauth_login.core.oauth.validation import TokenResponseValidator, TokenResponseValidatorResolver

LOG_PREFIX = "[AuthorizationResponse]"


class _StepFailed(Exception):
    def __init__(self, reason: FailureReason, message: str):
        super().__init__(message)
        self.failure = AuthenticationFailure(reason=reason, message=message)


class AuthorizationResponseHandler:
    """Turns an OpenID authorization response into an authentication result."""

    def __init__(
        self,
        validator_resolver: TokenResponseValidatorResolver,
        default_user_details_mapper: OpenIdUserDetailsMapper,
        token_endpoint_client: TokenEndpointClient,
        state_validator: Optional[StateValidator] = None,
    ):
        self._validator_resolver = validator_resolver
        self._default_user_details_mapper = default_user_details_mapper
        self._token_endpoint_client = token_endpoint_client
        self._state_validator = state_validator

    async def handle(
        self,
        response: AuthorizationResponse,
        client: OAuthClientConfig,
        metadata: OpenIdProviderMetadata,
        user_details_mapper: Optional[OpenIdUserDetailsMapper],
        token_endpoint: SecureEndpoint,
    ) -> AuthenticationResult:
        try:
            validator = self._resolve_validator(client)
            self._validate_state(response, client)
            token_response = await self._exchange_code(response, client, token_endpoint)
            token = await self._validate_token(validator, client, metadata, token_response, response.nonce)
            claims = self._parse_claims(token, client)
            user = self._map_user(user_details_mapper, client, token_response, claims)
        except _StepFailed as e:
            return e.failure

        logger.info(f"{LOG_PREFIX} Authenticated {user.username} via {client.name}")
        return AuthenticationSuccess(user=user)

    def get_token(self, token_response: TokenResponse) -> Optional[str]:
        """The token to validate; the identity token by default."""
        return token_response.id_token

    def _resolve_validator(self, client: OAuthClientConfig) -> TokenResponseValidator:
        validator = self._validator_resolver.resolve(client)
        if validator is None:
            logger.error(f"{LOG_PREFIX} No token response validator available for provider [{client.name}]")
            raise _StepFailed(FailureReason.VALIDATOR_UNAVAILABLE, "No token response validator")
        return validator

    def _validate_state(self, response: AuthorizationResponse, client: OAuthClientConfig) -> None:
        if self._state_validator is None:
            logger.debug(f"{LOG_PREFIX} Skipping state validation for [{client.name}], no state validator configured")
            return

        logger.trace(f"{LOG_PREFIX} Validating state in the authorization response from [{client.name}]")
        try:
            self._state_validator.validate(response.callback_request, response.state)
        except InvalidStateException as e:
            logger.warning(f"{LOG_PREFIX} Invalid state from provider [{client.name}]: {e}")
            raise _StepFailed(FailureReason.INVALID_STATE, "Invalid state") from e
        except Exception as e:
            logger.error(f"{LOG_PREFIX} State from [{client.name}] could not be verified: {type(e).__name__}: {e}")
            raise _StepFailed(FailureReason.INVALID_STATE, "State could not be verified") from e

    async def _exchange_code(
        self,
        response: AuthorizationResponse,
        client: OAuthClientConfig,
        token_endpoint: SecureEndpoint,
    ) -> TokenResponse:
        context = TokenRequestContext.authorization_code(response, token_endpoint, client)
        try:
            return await self._token_endpoint_client.send_request(context)
        except Exception as e:
            logger.error(f"{LOG_PREFIX} Code exchange with [{client.name}] failed: {type(e).__name__}: {e}")
            raise _StepFailed(FailureReason.TOKEN_ENDPOINT_ERROR, "Token exchange failed") from e

    async def _validate_token(
        self,
        validator: TokenResponseValidator,
        client: OAuthClientConfig,
        metadata: OpenIdProviderMetadata,
        token_response: TokenResponse,
        nonce: Optional[str],
    ) -> str:
        logger.trace(f"{LOG_PREFIX} Token endpoint returned a success response, validating the identity token")
        token = self.get_token(token_response)
        if not token:
            logger.warning(f"{LOG_PREFIX} Token response from [{client.name}] has no identity token")
            raise _StepFailed(FailureReason.TOKEN_VALIDATION_FAILURE, "No identity token")

        try:
            valid = await validator.validate(client, metadata, token, nonce)
        except Exception as e:
            logger.error(f"{LOG_PREFIX} Token validation for [{client.name}] raised {type(e).__name__}: {e}")
            raise _StepFailed(FailureReason.TOKEN_VALIDATION_FAILURE, "Token validation failed") from e

        if not valid:
            logger.warning(f"{LOG_PREFIX} Identity token from [{client.name}] failed validation")
            raise _StepFailed(FailureReason.TOKEN_VALIDATION_FAILURE, "Token validation failed")
        return token

    def _parse_claims(self, token: str, client: OAuthClientConfig) -> OpenIdClaims:
        try:
            return OpenIdClaims.from_token(token)
        except ClaimsParseException as e:
            # Passed validation but cannot be parsed: validator and parser disagree
            logger.error(f"{LOG_PREFIX} Failed to parse validated identity token from [{client.name}]: {e}")
            raise _StepFailed(FailureReason.CLAIMS_PARSE_ERROR, "Malformed identity token") from e

    def _map_user(
        self,
        user_details_mapper: Optional[OpenIdUserDetailsMapper],
        client: OAuthClientConfig,
        token_response: TokenResponse,
        claims: OpenIdClaims,
    ) -> UserDetails:
        mapper = user_details_mapper if user_details_mapper is not None else self._default_user_details_mapper
        try:
            return mapper.create_user_details(client.name, token_response, claims)
        except Exception as e:
            logger.error(f"{LOG_PREFIX} User details mapping for [{client.name}] failed: {type(e).__name__}: {e}")
            raise _StepFailed(FailureReason.USER_DETAILS_ERROR, "User details mapping failed") from e
