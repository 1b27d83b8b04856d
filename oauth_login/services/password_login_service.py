"""
Password login service.

Authenticates a username/password pair against the password grant providers
that were activated at startup, in configuration order.
"""

from typing import Dict, List, Optional, Tuple

from loguru import logger

from oauth_login.core.oauth.grant import (
    PasswordAuthenticationProvider,
    PasswordGrantStrategy,
    activate_password_grant,
)
from oauth_login.core.oauth.models import AuthenticationFailure, AuthenticationResult

LOG_PREFIX = "[PasswordLoginService]"


class PasswordLoginService:
    """Tries each active password grant provider until one succeeds."""

    def __init__(self, strategies: Dict[str, PasswordGrantStrategy]):
        self._providers: List[Tuple[str, PasswordAuthenticationProvider]] = []
        for name, strategy in strategies.items():
            provider = activate_password_grant(strategy)
            if provider is not None:
                self._providers.append((name, provider))
        logger.info(f"{LOG_PREFIX} {len(self._providers)} password grant providers active")

    @property
    def provider_names(self) -> List[str]:
        return [name for name, _ in self._providers]

    async def login(self, username: str, password: str) -> Tuple[Optional[str], Optional[AuthenticationResult]]:
        """
        Authenticate against each provider in turn.

        Returns:
            (provider name, result) of the first success, otherwise the last
            failure; (None, None) when no provider is active.
        """
        last: Tuple[Optional[str], Optional[AuthenticationResult]] = (None, None)
        for name, provider in self._providers:
            result = await provider.authenticate(username, password)
            if not isinstance(result, AuthenticationFailure):
                logger.info(f"{LOG_PREFIX} {username} authenticated via {name}")
                return name, result
            logger.debug(f"{LOG_PREFIX} {name} rejected {username}: {result.reason.value}")
            last = (name, result)
        return last
