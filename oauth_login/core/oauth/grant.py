"""
Password grant strategy resolution.

For every configured provider, decide which password grant authentication
provider (if any) to activate:

=====  =================================  ===================================
Order  Condition                          Outcome
=====  =================================  ===================================
1      config disabled                    none (DISABLED)
2      grant type is not ``password``     none (GRANT_TYPE_MISMATCH)
3      plain token endpoint configured    OAuth provider, or none
                                          (MISSING_USER_DETAILS_MAPPER)
4      openid block configured            OpenID provider, or none
                                          (MISSING_OPENID_PREREQUISITES /
                                          MISSING_USER_DETAILS_MAPPER)
5      otherwise                          none (INCOMPLETE_CONFIGURATION)
=====  =================================  ===================================

The first matching rule wins. Resolution is pure: no network access, same
inputs give the same outcome, and it can be re-run after a config reload.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple, Union

from loguru import logger

from oauth_login.core.oauth.config import GrantType, OAuthClientConfig
from oauth_login.core.oauth.discovery import OpenIdProviderMetadata
from oauth_login.core.oauth.endpoint import TokenEndpointClient
from oauth_login.core.oauth.mapper import OauthUserDetailsMapper, OpenIdUserDetailsMapper
from oauth_login.core.oauth.password import (
    OauthPasswordAuthenticationProvider,
    OpenIdPasswordAuthenticationProvider,
)
from oauth_login.core.oauth.validation import TokenResponseValidator

LOG_PREFIX = "[PasswordGrantResolver]"


class SkipReason(str, Enum):
    DISABLED = "disabled"
    GRANT_TYPE_MISMATCH = "grant_type_mismatch"
    MISSING_USER_DETAILS_MAPPER = "missing_user_details_mapper"
    MISSING_OPENID_PREREQUISITES = "missing_openid_prerequisites"
    INCOMPLETE_CONFIGURATION = "incomplete_configuration"


_SKIP_MESSAGES = {
    SkipReason.DISABLED: "the configuration is disabled",
    SkipReason.GRANT_TYPE_MISMATCH: "the grant type is not 'password'",
    SkipReason.MISSING_USER_DETAILS_MAPPER: "no user details mapper could be found",
    SkipReason.MISSING_OPENID_PREREQUISITES: "no provider metadata and token validator could be found",
    SkipReason.INCOMPLETE_CONFIGURATION: "no token endpoint or openid configuration was found",
}


@dataclass(frozen=True)
class OauthPasswordGrant:
    provider: OauthPasswordAuthenticationProvider


@dataclass(frozen=True)
class OpenIdPasswordGrant:
    provider: OpenIdPasswordAuthenticationProvider


@dataclass(frozen=True)
class NoPasswordGrant:
    reason: SkipReason


PasswordGrantStrategy = Union[OauthPasswordGrant, OpenIdPasswordGrant, NoPasswordGrant]
PasswordAuthenticationProvider = Union[OauthPasswordAuthenticationProvider, OpenIdPasswordAuthenticationProvider]


@dataclass(frozen=True)
class PasswordGrantCollaborators:
    """
    Everything the resolver may need for one provider.

    Only `token_endpoint_client` is mandatory; any other collaborator may be
    absent and the rules decide what its absence means.
    """

    token_endpoint_client: TokenEndpointClient
    user_details_mapper: Optional[OauthUserDetailsMapper] = None
    openid_user_details_mapper: Optional[OpenIdUserDetailsMapper] = None
    provider_metadata: Optional[OpenIdProviderMetadata] = None
    default_openid_user_details_mapper: Optional[OpenIdUserDetailsMapper] = None
    token_response_validator: Optional[TokenResponseValidator] = None


Rule = Callable[[OAuthClientConfig, PasswordGrantCollaborators], Optional[PasswordGrantStrategy]]


def _disabled(client: OAuthClientConfig, collaborators: PasswordGrantCollaborators) -> Optional[PasswordGrantStrategy]:
    if not client.enabled:
        return NoPasswordGrant(SkipReason.DISABLED)
    return None


def _not_password(client: OAuthClientConfig, collaborators: PasswordGrantCollaborators) -> Optional[PasswordGrantStrategy]:
    if client.grant_type is not GrantType.PASSWORD:
        return NoPasswordGrant(SkipReason.GRANT_TYPE_MISMATCH)
    return None


def _plain_token_endpoint(
    client: OAuthClientConfig, collaborators: PasswordGrantCollaborators
) -> Optional[PasswordGrantStrategy]:
    if client.token is None or not client.token.url:
        return None
    if collaborators.user_details_mapper is None:
        return NoPasswordGrant(SkipReason.MISSING_USER_DETAILS_MAPPER)
    return OauthPasswordGrant(
        OauthPasswordAuthenticationProvider(
            collaborators.token_endpoint_client,
            client,
            collaborators.user_details_mapper,
        )
    )


def _openid(client: OAuthClientConfig, collaborators: PasswordGrantCollaborators) -> Optional[PasswordGrantStrategy]:
    if client.openid is None:
        return None
    metadata = collaborators.provider_metadata
    validator = collaborators.token_response_validator
    if metadata is None or validator is None:
        return NoPasswordGrant(SkipReason.MISSING_OPENID_PREREQUISITES)

    mapper = collaborators.openid_user_details_mapper
    if mapper is None:
        mapper = collaborators.default_openid_user_details_mapper
    if mapper is None:
        return NoPasswordGrant(SkipReason.MISSING_USER_DETAILS_MAPPER)

    return OpenIdPasswordGrant(
        OpenIdPasswordAuthenticationProvider(
            client,
            metadata,
            collaborators.token_endpoint_client,
            mapper,
            validator,
        )
    )


def _incomplete(client: OAuthClientConfig, collaborators: PasswordGrantCollaborators) -> Optional[PasswordGrantStrategy]:
    return NoPasswordGrant(SkipReason.INCOMPLETE_CONFIGURATION)


RULES: Tuple[Rule, ...] = (_disabled, _not_password, _plain_token_endpoint, _openid, _incomplete)


def resolve_password_grant(
    client: OAuthClientConfig,
    collaborators: PasswordGrantCollaborators,
) -> PasswordGrantStrategy:
    """Apply `RULES` in order; the first rule returning a strategy wins."""
    for rule in RULES:
        strategy = rule(client, collaborators)
        if strategy is None:
            continue
        if isinstance(strategy, NoPasswordGrant):
            logger.debug(
                f"{LOG_PREFIX} Skipped password grant flow for provider [{client.name}] "
                f"because {_SKIP_MESSAGES[strategy.reason]}"
            )
        else:
            logger.debug(f"{LOG_PREFIX} Provider [{client.name}] uses {type(strategy).__name__}")
        return strategy
    raise AssertionError("the last password grant rule always matches")


def resolve_password_grants(
    clients: Iterable[OAuthClientConfig],
    collaborators_for: Callable[[OAuthClientConfig], PasswordGrantCollaborators],
) -> Dict[str, PasswordGrantStrategy]:
    """Resolve every provider independently, keyed by provider name."""
    return {client.name: resolve_password_grant(client, collaborators_for(client)) for client in clients}


def activate_password_grant(strategy: PasswordGrantStrategy) -> Optional[PasswordAuthenticationProvider]:
    """The provider to activate for a strategy, or None."""
    if isinstance(strategy, (OauthPasswordGrant, OpenIdPasswordGrant)):
        return strategy.provider
    if isinstance(strategy, NoPasswordGrant):
        return None
    raise TypeError(f"Unknown password grant strategy: {strategy!r}")
