"""Password grant login endpoint."""

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field

from oauth_login.common.exceptions import UnauthorizedException
from oauth_login.common.response import success_response
from oauth_login.core.events import EventPublisher, LoginFailedEvent, LoginSuccessfulEvent
from oauth_login.core.oauth.models import AuthenticationFailure, AuthenticationSuccess
from oauth_login.services.password_login_service import PasswordLoginService

LOG_PREFIX = "[AuthAPI]"
router = APIRouter(prefix="/v1/auth", tags=["Auth"])


# Schemas


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


# Dependencies


def get_password_login_service(request: Request) -> PasswordLoginService:
    return request.app.state.password_login_service


def get_event_publisher(request: Request) -> EventPublisher:
    return request.app.state.event_publisher


# Endpoints


@router.post("/login")
async def login_with_password(
    body: LoginRequest,
    service: PasswordLoginService = Depends(get_password_login_service),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Authenticate against the configured password grant providers."""
    provider, result = await service.login(body.username, body.password)

    if isinstance(result, AuthenticationSuccess):
        publisher.publish(LoginSuccessfulEvent(user=result.user, provider=provider or ""))
        return success_response(
            data={
                "username": result.user.username,
                "roles": list(result.user.roles),
                "provider": provider,
            },
            message="Login successful",
        )

    if isinstance(result, AuthenticationFailure):
        publisher.publish(LoginFailedEvent(failure=result, provider=provider or ""))
    else:
        logger.warning(f"{LOG_PREFIX} Password login attempted but no password grant provider is active")
    raise UnauthorizedException("Invalid username or password")
