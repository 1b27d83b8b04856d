"""
State and nonce handling on the callback side.

The authorization redirect (built elsewhere) records the state and nonce it
sent; here they are read back from the callback request. Only the retrieval
half is implemented: writing the cookies belongs to the redirect builder.
"""

import hmac
from typing import Any, Optional, Protocol

from loguru import logger

from oauth_login.common.exceptions import InvalidStateException

LOG_PREFIX = "[OAuthState]"


class StateValidator(Protocol):
    def validate(self, request: Any, state: Optional[str]) -> None:
        """Raise `InvalidStateException` when `state` does not match the recorded value."""
        ...


class CookiePersistence:
    """Reads a value recorded in a cookie by the authorization redirect."""

    def __init__(self, cookie_name: str):
        self.cookie_name = cookie_name

    def retrieve(self, request: Any) -> Optional[str]:
        cookies = getattr(request, "cookies", None) or {}
        value = cookies.get(self.cookie_name)
        return value or None


class DefaultStateValidator:
    """Compares the returned state with the one recorded for the request."""

    def __init__(self, persistence: CookiePersistence):
        self._persistence = persistence

    def validate(self, request: Any, state: Optional[str]) -> None:
        if not state:
            raise InvalidStateException("No state found in the authorization response")

        recorded = self._persistence.retrieve(request)
        if recorded is None:
            logger.warning(f"{LOG_PREFIX} No recorded state found for the callback request")
            raise InvalidStateException("No recorded state to compare against")

        if not hmac.compare_digest(recorded.encode(), state.encode()):
            logger.warning(f"{LOG_PREFIX} State mismatch in the authorization response")
            raise InvalidStateException("State does not match the recorded state")
