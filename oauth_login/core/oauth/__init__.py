"""
OAuth/OIDC auth module.

Authorization code completion and password grant resolution for OpenID
Connect and plain OAuth 2.0 providers.

Module layout:
- config.py: config loader (OAuthClientConfig, OAuthConfigLoader)
- models.py: value types (AuthorizationResponse, TokenResponse, results)
- discovery.py / endpoint.py: provider metadata and token endpoint clients
- state.py / validation.py / mapper.py: pluggable collaborators
- response_handler.py: authorization response pipeline
- grant.py / password.py: password grant strategy resolution and providers
- cache.py / client.py / controller.py: per-provider clients and login entry points
"""

from oauth_login.core.oauth.cache import ProviderInstanceCache
from oauth_login.core.oauth.client import AuthorizationRedirectHandler, OpenIdClient
from oauth_login.core.oauth.config import (
    GrantType,
    OAuthClientConfig,
    OAuthConfigLoader,
    get_oauth_config,
    reload_oauth_config,
)
from oauth_login.core.oauth.grant import (
    NoPasswordGrant,
    OauthPasswordGrant,
    OpenIdPasswordGrant,
    PasswordGrantCollaborators,
    SkipReason,
    activate_password_grant,
    resolve_password_grant,
    resolve_password_grants,
)
from oauth_login.core.oauth.models import (
    AuthenticationFailure,
    AuthenticationResult,
    AuthenticationSuccess,
    AuthorizationResponse,
    FailureReason,
    UserDetails,
)
from oauth_login.core.oauth.response_handler import AuthorizationResponseHandler

__all__ = [
    "OAuthConfigLoader",
    "OAuthClientConfig",
    "GrantType",
    "get_oauth_config",
    "reload_oauth_config",
    "AuthorizationResponse",
    "AuthenticationResult",
    "AuthenticationSuccess",
    "AuthenticationFailure",
    "FailureReason",
    "UserDetails",
    "AuthorizationResponseHandler",
    "OauthPasswordGrant",
    "OpenIdPasswordGrant",
    "NoPasswordGrant",
    "PasswordGrantCollaborators",
    "SkipReason",
    "resolve_password_grant",
    "resolve_password_grants",
    "activate_password_grant",
    "ProviderInstanceCache",
    "AuthorizationRedirectHandler",
    "OpenIdClient",
]
