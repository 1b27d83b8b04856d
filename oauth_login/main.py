"""
FastAPI application factory.

The authorization redirect (building the provider's authorization URL and
recording state/nonce) is deployment specific, so `create_app` takes it as an
argument instead of exposing a module level app::

    app = create_app(redirect_handler=MyRedirectHandler())
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Mapping, Optional

import httpx
from fastapi import FastAPI
from loguru import logger

from oauth_login.api import api_router
from oauth_login.common.exceptions import OAuthException, register_exception_handlers
from oauth_login.common.logging import LoggingMiddleware, setup_logging
from oauth_login.core.events import EventPublisher
from oauth_login.core.oauth.cache import ProviderInstanceCache
from oauth_login.core.oauth.client import AuthorizationRedirectHandler, OpenIdClient
from oauth_login.core.oauth.config import GrantType, OAuthClientConfig, OAuthConfigLoader, get_oauth_config
from oauth_login.core.oauth.controller import LoginHandler, OauthController, RedirectingLoginHandler
from oauth_login.core.oauth.discovery import OpenIdDiscoveryClient, OpenIdProviderMetadata
from oauth_login.core.oauth.endpoint import HttpxTokenEndpointClient, TokenEndpointClient
from oauth_login.core.oauth.grant import PasswordGrantCollaborators, resolve_password_grants
from oauth_login.core.oauth.mapper import DefaultOpenIdUserDetailsMapper, OauthUserDetailsMapper, OpenIdUserDetailsMapper
from oauth_login.core.oauth.response_handler import AuthorizationResponseHandler
from oauth_login.core.oauth.state import CookiePersistence, DefaultStateValidator
from oauth_login.core.oauth.validation import (
    JwksTokenResponseValidator,
    TokenResponseValidator,
    TokenResponseValidatorResolver,
)
from oauth_login.core.settings import settings
from oauth_login.services.password_login_service import PasswordLoginService


def _uses_authorization_code(config: OAuthClientConfig) -> bool:
    return config.enabled and config.openid is not None and config.grant_type is GrantType.AUTHORIZATION_CODE


def _needs_metadata_for_password(config: OAuthClientConfig) -> bool:
    return (
        config.enabled
        and config.grant_type is GrantType.PASSWORD
        and (config.token is None or not config.token.url)
        and config.openid is not None
    )


def create_app(
    redirect_handler: AuthorizationRedirectHandler,
    config_loader: Optional[OAuthConfigLoader] = None,
    *,
    login_handler: Optional[LoginHandler] = None,
    event_publisher: Optional[EventPublisher] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    token_endpoint_client: Optional[TokenEndpointClient] = None,
    default_token_response_validator: Optional[TokenResponseValidator] = None,
    token_response_validators: Optional[Mapping[str, TokenResponseValidator]] = None,
    openid_user_details_mappers: Optional[Mapping[str, OpenIdUserDetailsMapper]] = None,
    oauth_user_details_mappers: Optional[Mapping[str, OauthUserDetailsMapper]] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        redirect_handler: Builds the redirect to a provider's authorization endpoint
        config_loader: Provider configuration; the global loader when None
        login_handler: Success/failure responses; redirects to the configured URLs when None
        event_publisher: Receives login events
        http_client: Shared client for discovery, token and JWKS requests
        token_endpoint_client: Replaces the httpx token endpoint client
        default_token_response_validator: Replaces the JWKS validator
        token_response_validators: Validators for specific providers
        openid_user_details_mappers: Per-provider OpenID mapper overrides
        oauth_user_details_mappers: Per-provider mappers for plain OAuth 2.0 password grants
    """
    setup_logging()

    timeout = settings.http_timeout_seconds
    config_loader = config_loader or get_oauth_config()
    event_publisher = event_publisher or EventPublisher()
    openid_mappers: Dict[str, OpenIdUserDetailsMapper] = dict(openid_user_details_mappers or {})
    oauth_mappers: Dict[str, OauthUserDetailsMapper] = dict(oauth_user_details_mappers or {})

    discovery = OpenIdDiscoveryClient(http_client, timeout=timeout)
    token_endpoint_client = token_endpoint_client or HttpxTokenEndpointClient(http_client, timeout=timeout)
    default_validator = default_token_response_validator or JwksTokenResponseValidator(http_client, timeout=timeout)
    validator_resolver = TokenResponseValidatorResolver(default=default_validator, named=token_response_validators)
    default_mapper = DefaultOpenIdUserDetailsMapper()

    state_validator = None
    if settings.state_validation_enabled:
        state_validator = DefaultStateValidator(CookiePersistence(settings.state_cookie_name))
    nonce_persistence = CookiePersistence(settings.nonce_cookie_name)

    response_handler = AuthorizationResponseHandler(
        validator_resolver,
        default_mapper,
        token_endpoint_client,
        state_validator=state_validator,
    )

    if login_handler is None:
        login_handler = RedirectingLoginHandler(
            settings.login_success_url,
            settings.login_failure_url,
            clear_cookies=(settings.state_cookie_name, settings.nonce_cookie_name),
        )

    async def build_client(name: str) -> OpenIdClient:
        config = config_loader.get_provider(name)
        if config is None or config.openid is None:
            raise OAuthException(f"Provider {name} has no OpenID configuration")
        metadata = await discovery.fetch(config.openid)
        return OpenIdClient(
            config,
            metadata,
            response_handler,
            redirect_handler,
            nonce_persistence=nonce_persistence,
            user_details_mapper=openid_mappers.get(name),
        )

    clients: ProviderInstanceCache[OpenIdClient] = ProviderInstanceCache(build_client)
    controllers = {
        name: OauthController(name, clients, login_handler, event_publisher)
        for name, config in config_loader.get_all_providers().items()
        if _uses_authorization_code(config)
    }

    async def resolve_password_providers() -> PasswordLoginService:
        providers = config_loader.get_all_providers()
        metadata: Dict[str, Optional[OpenIdProviderMetadata]] = {}
        for name, config in providers.items():
            if not _needs_metadata_for_password(config):
                continue
            try:
                metadata[name] = await discovery.fetch(config.openid)
            except OAuthException as e:
                logger.warning(f"   ⚠️  Metadata for password grant provider {name} unavailable: {e}")
                metadata[name] = None

        def collaborators_for(config: OAuthClientConfig) -> PasswordGrantCollaborators:
            return PasswordGrantCollaborators(
                token_endpoint_client=token_endpoint_client,
                user_details_mapper=oauth_mappers.get(config.name),
                openid_user_details_mapper=openid_mappers.get(config.name),
                provider_metadata=metadata.get(config.name),
                default_openid_user_details_mapper=default_mapper,
                token_response_validator=validator_resolver.resolve(config),
            )

        return PasswordLoginService(resolve_password_grants(providers.values(), collaborators_for))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """Application Lifecycle"""
        logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"   Environment: {settings.environment}")
        logger.info(f"   Authorization code providers: {', '.join(controllers) or 'none'}")

        app.state.password_login_service = await resolve_password_providers()

        yield

        clients.invalidate()
        logger.info("👋 Application shutdown")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs" if settings.debug or settings.environment == "development" else None,
        redoc_url="/redoc" if settings.debug or settings.environment == "development" else None,
        lifespan=lifespan,
    )

    app.state.oauth_config = config_loader
    app.state.oauth_controllers = controllers
    app.state.oauth_clients = clients
    app.state.event_publisher = event_publisher
    app.state.password_login_service = PasswordLoginService({})

    # Exception handling
    register_exception_handlers(app)

    # Add logging middleware
    app.add_middleware(LoggingMiddleware)

    app.include_router(api_router, prefix="/api")

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "version": settings.app_version}

    return app
