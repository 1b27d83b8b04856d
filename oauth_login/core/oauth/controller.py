"""
Per-provider login controller.

`OauthController.login` starts the authorization redirect; `callback` completes
the login and hands the result to the login handler. The OpenID client is
resolved through the provider instance cache on each request, so it is built
once on first use and shared afterwards.
"""

from typing import Optional, Protocol, Sequence
from urllib.parse import urlencode

from fastapi import Request, Response, status
from fastapi.responses import RedirectResponse
from loguru import logger

from oauth_login.core.events import EventPublisher, LoginFailedEvent, LoginSuccessfulEvent
from oauth_login.core.oauth.cache import ProviderInstanceCache
from oauth_login.core.oauth.client import OpenIdClient
from oauth_login.core.oauth.models import AuthenticationFailure, AuthenticationSuccess, UserDetails

LOG_PREFIX = "[OAuthController]"

# Error code put on the failure redirect; the failure reason itself stays in the logs.
LOGIN_FAILED_ERROR = "login_failed"


class LoginHandler(Protocol):
    def login_success(self, user: UserDetails, request: Request) -> Response:
        ...

    def login_failed(self, failure: AuthenticationFailure) -> Response:
        ...


class RedirectingLoginHandler:
    """Redirects to fixed success/failure URLs and drops the one-shot state and nonce cookies."""

    def __init__(self, success_url: str, failure_url: str, clear_cookies: Sequence[str] = ()):
        self.success_url = success_url
        self.failure_url = failure_url
        self.clear_cookies = tuple(clear_cookies)

    def login_success(self, user: UserDetails, request: Request) -> Response:
        response = RedirectResponse(url=self.success_url, status_code=status.HTTP_302_FOUND)
        self._clear(response)
        return response

    def login_failed(self, failure: AuthenticationFailure) -> Response:
        separator = "&" if "?" in self.failure_url else "?"
        url = f"{self.failure_url}{separator}{urlencode({'error': LOGIN_FAILED_ERROR})}"
        response = RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)
        self._clear(response)
        return response

    def _clear(self, response: Response) -> None:
        for name in self.clear_cookies:
            response.delete_cookie(name)


class OauthController:
    """Login and callback entry points of one provider."""

    def __init__(
        self,
        provider_name: str,
        client_provider: ProviderInstanceCache[OpenIdClient],
        login_handler: LoginHandler,
        event_publisher: Optional[EventPublisher] = None,
    ):
        self.provider_name = provider_name
        self._client_provider = client_provider
        self._login_handler = login_handler
        self._event_publisher = event_publisher

    async def get_client(self) -> OpenIdClient:
        return await self._client_provider.get(self.provider_name)

    async def login(self, request: Request) -> Response:
        """Redirect the user agent to the provider's authorization endpoint."""
        client = await self.get_client()
        logger.info(f"{LOG_PREFIX} Redirecting to {self.provider_name} authorization")
        return await client.authorization_redirect(request)

    async def callback(self, request: Request) -> Response:
        """
        Complete the login from the provider's redirect back.

        Any outcome other than a success or failure result, including an
        unexpected error, is answered with an empty 401.
        """
        try:
            client = await self.get_client()
            result = await client.on_callback(request)
        except Exception as e:
            logger.opt(exception=True).error(f"{LOG_PREFIX} Callback for {self.provider_name} failed: {e}")
            return Response(status_code=status.HTTP_401_UNAUTHORIZED)

        if isinstance(result, AuthenticationSuccess):
            logger.info(f"{LOG_PREFIX} Login succeeded via {self.provider_name}: {result.user.username}")
            self._publish(LoginSuccessfulEvent(user=result.user, provider=self.provider_name))
            return self._login_handler.login_success(result.user, request)

        if isinstance(result, AuthenticationFailure):
            logger.warning(
                f"{LOG_PREFIX} Login failed via {self.provider_name}: {result.reason.value}"
                + (f" ({result.message})" if result.message else "")
            )
            self._publish(LoginFailedEvent(failure=result, provider=self.provider_name))
            return self._login_handler.login_failed(result)

        logger.warning(f"{LOG_PREFIX} Callback for {self.provider_name} produced no authentication result")
        return Response(status_code=status.HTTP_401_UNAUTHORIZED)

    def _publish(self, event: object) -> None:
        if self._event_publisher is not None:
            self._event_publisher.publish(event)
