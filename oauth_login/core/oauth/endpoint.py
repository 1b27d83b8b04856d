"""
Token endpoint client.

Sends a `TokenRequestContext` to the provider's token endpoint and returns the
parsed `TokenResponse`. Retrying is left to callers that want it; the
authorization pipeline never retries an exchange.
"""

from typing import Any, Dict, Optional, Protocol
from urllib.parse import parse_qs

import httpx
from loguru import logger
from pydantic import ValidationError

from oauth_login.common.exceptions import TokenEndpointException
from oauth_login.core.oauth.models import TokenRequestContext, TokenResponse

LOG_PREFIX = "[TokenEndpoint]"


class TokenEndpointClient(Protocol):
    async def send_request(self, context: TokenRequestContext) -> TokenResponse:
        """Perform the exchange; raise on transport or protocol failure."""
        ...


class HttpxTokenEndpointClient:
    """Token endpoint client backed by httpx."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._http_client = http_client
        self._timeout = timeout

    async def send_request(self, context: TokenRequestContext) -> TokenResponse:
        """
        POST the token request.

        Raises:
            TokenEndpointException: transport error, non-2xx status or an
                unparseable body
        """
        url = context.endpoint.url
        data = context.form()
        headers = context.headers()

        logger.debug(
            f"{LOG_PREFIX} Sending {context.grant_type.value} request for {context.client.name} "
            f"(auth_method={context.auth_method.value})"
        )

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, data=data, headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, data=data, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{LOG_PREFIX} Token request to {url} failed: {type(e).__name__}: {e}")
            raise TokenEndpointException(f"Token request failed: {type(e).__name__}") from e

        body = self._parse_body(response)

        if response.status_code != 200:
            error = body.get("error") if isinstance(body, dict) else None
            logger.error(
                f"{LOG_PREFIX} Token exchange failed for {context.client.name}: "
                f"{response.status_code} error={error}"
            )
            raise TokenEndpointException(
                f"Token exchange failed: {response.status_code}",
                status_code=response.status_code,
                error=error,
            )

        try:
            token_response = TokenResponse.model_validate(body)
        except ValidationError as e:
            raise TokenEndpointException("Token endpoint returned an invalid response") from e

        logger.info(f"{LOG_PREFIX} Token exchange successful for {context.client.name}")
        return token_response

    @staticmethod
    def _parse_body(response: httpx.Response) -> Dict[str, Any]:
        """JSON body, or form encoded body for providers that ignore Accept."""
        content_type = response.headers.get("content-type", "")
        try:
            if "application/x-www-form-urlencoded" in content_type or "text/plain" in content_type:
                parsed = parse_qs(response.text)
                return {k: v[0] for k, v in parsed.items()}
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
