"""
OpenID client: per-provider end-to-end login handling.

`authorization_redirect` hands the login request to the configured redirect
handler. `on_callback` reads the provider's redirect back (query string, or
form body for ``response_mode=form_post``), turns provider error responses into
failures and runs the authorization response handler on the rest.
"""

from typing import Any, Mapping, Optional, Protocol

from fastapi import Request, Response
from loguru import logger

from oauth_login.core.oauth.config import OAuthClientConfig
from oauth_login.core.oauth.discovery import OpenIdProviderMetadata
from oauth_login.core.oauth.mapper import OpenIdUserDetailsMapper
from oauth_login.core.oauth.models import (
    AuthenticationFailure,
    AuthenticationResult,
    AuthorizationResponse,
    FailureReason,
)
from oauth_login.core.oauth.response_handler import AuthorizationResponseHandler
from oauth_login.core.oauth.state import CookiePersistence

LOG_PREFIX = "[OpenIdClient]"


class AuthorizationRedirectHandler(Protocol):
    async def redirect(
        self,
        client: OAuthClientConfig,
        metadata: OpenIdProviderMetadata,
        request: Request,
    ) -> Response:
        """Build the 3xx response to the provider's authorization endpoint."""
        ...


def get_base_url(request: Request) -> str:
    """Get base URL, with proxy support."""
    base_url = str(request.base_url).rstrip("/")
    forwarded_proto = request.headers.get("x-forwarded-proto")
    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        proto = forwarded_proto or "https"
        base_url = f"{proto}://{forwarded_host}"
    return base_url


def get_callback_uri(request: Request) -> str:
    """The redirect_uri the provider called back, without query string."""
    return f"{get_base_url(request)}{request.url.path}"


class OpenIdClient:
    """Login flow of one OpenID provider."""

    def __init__(
        self,
        config: OAuthClientConfig,
        metadata: OpenIdProviderMetadata,
        response_handler: AuthorizationResponseHandler,
        redirect_handler: AuthorizationRedirectHandler,
        nonce_persistence: Optional[CookiePersistence] = None,
        user_details_mapper: Optional[OpenIdUserDetailsMapper] = None,
    ):
        self.config = config
        self.metadata = metadata
        self._response_handler = response_handler
        self._redirect_handler = redirect_handler
        self._nonce_persistence = nonce_persistence
        self._user_details_mapper = user_details_mapper

    @property
    def name(self) -> str:
        return self.config.name

    async def authorization_redirect(self, request: Request) -> Response:
        return await self._redirect_handler.redirect(self.config, self.metadata, request)

    async def on_callback(self, request: Request) -> Optional[AuthenticationResult]:
        """
        Handle the provider's redirect back.

        Returns None when the request is neither an authorization response nor
        an error response.
        """
        params = await self._callback_params(request)

        error = params.get("error")
        if error:
            logger.warning(
                f"{LOG_PREFIX} Provider [{self.name}] returned an error: {error} - {params.get('error_description')}"
            )
            return AuthenticationFailure(FailureReason.AUTHORIZATION_ERROR, str(error))

        code = params.get("code")
        if not code:
            logger.warning(f"{LOG_PREFIX} Callback for [{self.name}] carries neither code nor error")
            return None

        token_endpoint = self.metadata.token_endpoint_ref(self.config.openid)
        if token_endpoint is None:
            logger.error(f"{LOG_PREFIX} Provider [{self.name}] metadata has no token endpoint")
            return AuthenticationFailure(FailureReason.TOKEN_ENDPOINT_ERROR, "No token endpoint")

        response = AuthorizationResponse(
            code=str(code),
            state=params.get("state"),
            nonce=self._nonce_persistence.retrieve(request) if self._nonce_persistence else None,
            callback_request=request,
            redirect_uri=get_callback_uri(request),
        )
        return await self._response_handler.handle(
            response,
            self.config,
            self.metadata,
            self._user_details_mapper,
            token_endpoint,
        )

    @staticmethod
    async def _callback_params(request: Request) -> Mapping[str, Any]:
        if request.method == "POST":
            form = await request.form()
            return {k: v for k, v in form.items() if isinstance(v, str)}
        return dict(request.query_params)
