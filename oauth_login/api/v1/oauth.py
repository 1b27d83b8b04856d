"""
OAuth/OIDC login API endpoints.

Provides the authorization code login flow:
- GET /oauth/providers - list enabled providers
- GET /oauth/login/{provider} - start authorization
- GET|POST /oauth/callback/{provider} - complete the login (POST for form_post)
"""

from typing import Dict, List

from fastapi import APIRouter, Depends, Request, Response
from loguru import logger
from pydantic import BaseModel

from oauth_login.common.exceptions import BadRequestException, NotFoundException
from oauth_login.core.oauth.config import OAuthConfigLoader
from oauth_login.core.oauth.controller import OauthController

LOG_PREFIX = "[OAuthAPI]"
router = APIRouter(prefix="/v1/oauth", tags=["OAuth"])


# ==================== Response Models ====================


class OAuthProviderInfo(BaseModel):
    """OAuth provider info (no sensitive fields)."""

    id: str
    display_name: str


class OAuthProvidersResponse(BaseModel):
    """OAuth provider list response."""

    providers: List[OAuthProviderInfo]


# ==================== Dependencies ====================


def get_config_loader(request: Request) -> OAuthConfigLoader:
    return request.app.state.oauth_config


def get_controllers(request: Request) -> Dict[str, OauthController]:
    return request.app.state.oauth_controllers


def get_controller(provider: str, controllers: Dict[str, OauthController] = Depends(get_controllers)) -> OauthController:
    controller = controllers.get(provider)
    if controller is None:
        raise NotFoundException(f"Unknown OAuth provider: {provider}")
    return controller


# ==================== API Endpoints ====================


@router.get("/providers", response_model=OAuthProvidersResponse)
async def list_oauth_providers(config: OAuthConfigLoader = Depends(get_config_loader)) -> OAuthProvidersResponse:
    """
    List enabled OAuth providers.

    Used by frontend to render SSO buttons.
    """
    return OAuthProvidersResponse(providers=[OAuthProviderInfo(**p) for p in config.list_providers()])


@router.get("/login/{provider}")
async def oauth_login(
    request: Request,
    controller: OauthController = Depends(get_controller),
) -> Response:
    """Redirect the user to the provider's authorization page."""
    try:
        return await controller.login(request)
    except Exception as e:
        logger.error(f"{LOG_PREFIX} Failed to start authorization for {controller.provider_name}: {e}")
        raise BadRequestException("Failed to initiate OAuth flow")


@router.api_route("/callback/{provider}", methods=["GET", "POST"])
async def oauth_callback(
    request: Request,
    controller: OauthController = Depends(get_controller),
) -> Response:
    """
    Handle the provider's redirect back.

    Exchanges the authorization code, validates the identity token and forwards
    the result to the login handler. Failures never expose their reason.
    """
    return await controller.callback(request)
