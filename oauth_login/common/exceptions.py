"""
Unified exception hierarchy.

- **HTTP exceptions**: everything raised towards the client inherits
  `AppException(HTTPException)`, which separates the HTTP `status_code` from the
  business `code` and carries extra detail in `data`.
- **OAuth collaborator exceptions**: plain exceptions raised by the state
  validator, token endpoint client, claims parser and discovery client. The
  authorization pipeline converts them into `AuthenticationFailure` values; they
  never reach the HTTP layer.
- **Global handlers**: `register_exception_handlers` wires FastAPI handlers that
  render `oauth_login.common.response.error_response`.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from oauth_login.common.response import error_response


class AppException(HTTPException):
    """Application base exception"""

    code: int
    data: Any

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        message: str = "Internal Server Error",
        *,
        code: int | None = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = status_code if code is None else code
        self.data = data


class NotFoundException(AppException):
    """Resource not found (404)"""

    def __init__(self, message: str = "Resource not found", *, code: int | None = None, data: Any = None):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, message=message, code=code, data=data)


class BadRequestException(AppException):
    """Bad request (400)"""

    def __init__(self, message: str = "Bad request", *, code: int | None = None, data: Any = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, message=message, code=code, data=data)


class UnauthorizedException(AppException):
    """Unauthorized (401)"""

    def __init__(self, message: str = "Unauthorized", *, code: int | None = None, data: Any = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            message=message,
            code=code,
            data=data,
            headers={"WWW-Authenticate": "Bearer"},
        )


# OAuth collaborator exceptions


class OAuthException(Exception):
    """Base class for failures raised by OAuth collaborators."""


class InvalidStateException(OAuthException):
    """The state returned by the provider does not match the recorded state."""


class TokenEndpointException(OAuthException):
    """The token endpoint could not be reached or answered with an error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, error: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class ClaimsParseException(OAuthException):
    """An identity token could not be parsed into claims."""


class ProviderDiscoveryException(OAuthException):
    """The OpenID discovery document could not be fetched or parsed."""


class ConfigurationException(OAuthException):
    """A provider configuration is unusable."""


# Error responses & global handlers


def create_error_response(*, status_code: int, code: int, message: str, data: Any = None) -> Response:
    """Build an error response in the unified format."""
    return JSONResponse(
        status_code=status_code,
        content=error_response(message=message, code=code, data=data),
    )


async def app_exception_handler(request: Request, exc: AppException) -> Response:
    """Handle AppException."""
    response = create_error_response(
        status_code=exc.status_code,
        code=getattr(exc, "code", exc.status_code),
        message=str(exc.detail),
        data=getattr(exc, "data", None),
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def http_exception_handler(request: Request, exc: HTTPException) -> Response:
    """Handle FastAPI/Starlette HTTPException (not AppException)."""
    return create_error_response(
        status_code=exc.status_code,
        code=exc.status_code,
        message=str(exc.detail),
        data=getattr(exc, "data", None),
    )


def _format_validation_errors(errors: Iterable[Mapping[str, Any]]) -> List[dict[str, Any]]:
    formatted: List[dict[str, Any]] = []
    for err in errors:
        loc = err.get("loc", ())
        field_path = ".".join(str(x) for x in loc)
        formatted.append(
            {
                "field": field_path,
                "message": err.get("msg"),
                "type": err.get("type"),
            }
        )
    return formatted


async def request_validation_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle request validation errors (RequestValidationError / PydanticValidationError)."""
    errors: List[dict[str, Any]] = []
    if isinstance(exc, (RequestValidationError, PydanticValidationError)):
        errors = _format_validation_errors(exc.errors())

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Request parameter validation failed",
        data={"validation_errors": errors} if errors else None,
    )


async def general_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle uncaught exceptions (500)."""
    logger.exception("Unhandled exception: {}", exc)

    from oauth_login.core.settings import settings

    debug = bool(settings.debug)
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message=str(exc) if debug else "Internal Server Error",
        data={"error_type": type(exc).__name__} if debug else None,
    )


def register_exception_handlers(app: Any) -> None:
    """Register all exception handlers on a FastAPI app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
