"""
OAuth/OIDC provider config loader.

Loads provider configs from YAML with support for:
- built-in provider templates (Google, Microsoft, Keycloak)
- custom OpenID Connect providers
- env var expansion ${VAR_NAME}
- password grant providers backed by a plain token endpoint

Disabled providers are loaded as well; deciding what a disabled provider means
is left to the grant resolver and the route wiring.
"""

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from loguru import logger

LOG_PREFIX = "[OAuthConfig]"

DEFAULT_CONFIGURATION_PATH = "/.well-known/openid-configuration"

# ==================== Built-in Provider Templates ====================

PROVIDER_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "google": {
        "display_name": "Google",
        "scopes": ["openid", "email", "profile"],
        "openid": {"issuer": "https://accounts.google.com"},
    },
    "microsoft": {
        # {tenant} placeholder, "common" accepts all account types
        "display_name": "Microsoft",
        "scopes": ["openid", "email", "profile"],
        "openid": {"issuer": "https://login.microsoftonline.com/{tenant}/v2.0"},
        "default_tenant": "common",
    },
    "keycloak": {
        # {realm_url} must be supplied, e.g. https://sso.example.com/realms/main
        "display_name": "Keycloak",
        "scopes": ["openid", "email", "profile"],
        "openid": {"issuer": "{realm_url}"},
    },
}


class GrantType(str, Enum):
    """OAuth 2.0 grant types a client can be configured for."""

    AUTHORIZATION_CODE = "authorization_code"
    PASSWORD = "password"
    CLIENT_CREDENTIALS = "client_credentials"
    REFRESH_TOKEN = "refresh_token"


class AuthMethod(str, Enum):
    """Client authentication methods at the token endpoint."""

    CLIENT_SECRET_BASIC = "client_secret_basic"
    CLIENT_SECRET_POST = "client_secret_post"
    NONE = "none"


@dataclass(frozen=True)
class EndpointConfig:
    """A configured endpoint (token or authorization)."""

    url: Optional[str] = None
    auth_method: Optional[AuthMethod] = None


@dataclass(frozen=True)
class OpenIdConfig:
    """OpenID Connect block of a provider config."""

    issuer: Optional[str] = None
    configuration_path: str = DEFAULT_CONFIGURATION_PATH
    # Overrides the token endpoint advertised by the discovery document
    token: Optional[EndpointConfig] = None

    @property
    def discovery_url(self) -> Optional[str]:
        if not self.issuer:
            return None
        return f"{self.issuer.rstrip('/')}{self.configuration_path}"


@dataclass(frozen=True)
class OAuthClientConfig:
    """Single OAuth provider config."""

    name: str  # Provider key (e.g. "google"), unique across providers
    client_id: str
    client_secret: Optional[str] = None
    enabled: bool = True
    grant_type: GrantType = GrantType.AUTHORIZATION_CODE
    scopes: Tuple[str, ...] = ("openid",)
    display_name: Optional[str] = None
    token: Optional[EndpointConfig] = None  # Plain OAuth 2.0 token endpoint
    openid: Optional[OpenIdConfig] = None

    @property
    def label(self) -> str:
        return self.display_name or self.name.capitalize()




class OAuthConfigLoader:
    """OAuth config loader."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the config loader.

        Args:
            config_path: Config file path; use default when None
        """
        if config_path:
            self.config_path = Path(config_path)
        else:
            # Default path: <project root>/config/oauth_providers.yaml
            self.config_path = Path(__file__).parent.parent.parent.parent / "config" / "oauth_providers.yaml"

        self._providers: Dict[str, OAuthClientConfig] = {}
        self._loaded: bool = False

    def load(self, force_reload: bool = False) -> None:
        """
        Load config file.

        Args:
            force_reload: Force reload
        """
        if self._loaded and not force_reload:
            return

        self._providers = {}

        if not self.config_path.exists():
            logger.warning(f"{LOG_PREFIX} Config file not found: {self.config_path}")
            self._loaded = True
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"{LOG_PREFIX} Failed to load config: {e}")
            self._loaded = True
            return

        self.load_dict(raw or {})

    def load_dict(self, raw: Dict[str, Any]) -> None:
        """Load providers from an already parsed mapping."""
        providers: Dict[str, OAuthClientConfig] = {}

        for name, config in (raw.get("providers") or {}).items():
            try:
                provider = self._parse_provider(name, config or {})
            except (TypeError, ValueError) as e:
                logger.error(f"{LOG_PREFIX} Failed to load provider '{name}': {e}")
                continue
            if provider:
                providers[name] = provider
                state = "enabled" if provider.enabled else "disabled"
                logger.info(f"{LOG_PREFIX} Loaded provider: {name} ({state}, grant_type={provider.grant_type.value})")

        self._providers = providers
        self._loaded = True
        logger.info(f"{LOG_PREFIX} Loaded {len(self._providers)} OAuth providers")

    def _parse_provider(self, name: str, config: Dict[str, Any]) -> Optional[OAuthClientConfig]:
        """Parse a single provider config."""
        config = self._expand_env_vars(config)

        template_name = config.get("template")
        template = PROVIDER_TEMPLATES.get(template_name, {}) if template_name else {}
        if template_name and not template:
            logger.warning(f"{LOG_PREFIX} Provider '{name}' references unknown template '{template_name}'")

        # User values override the template; nested openid blocks are merged
        merged = {**template, **config}
        if isinstance(template.get("openid"), dict) and isinstance(config.get("openid"), dict):
            merged["openid"] = {**template["openid"], **config["openid"]}

        client_id = str(merged.get("client_id") or "").strip()
        if not client_id:
            logger.warning(f"{LOG_PREFIX} Provider '{name}' missing client_id")
            return None
        client_secret = str(merged.get("client_secret") or "").strip() or None

        substitutions = {
            "tenant": merged.get("tenant", merged.get("default_tenant", "common")),
            "realm_url": str(merged.get("realm_url", "")).rstrip("/"),
        }

        scopes = merged.get("scopes", ["openid"])
        if isinstance(scopes, str):
            scopes = scopes.split()

        return OAuthClientConfig(
            name=name,
            client_id=client_id,
            client_secret=client_secret,
            enabled=_parse_bool(merged.get("enabled", True)),
            grant_type=GrantType(merged.get("grant_type", GrantType.AUTHORIZATION_CODE.value)),
            scopes=tuple(scopes),
            display_name=merged.get("display_name"),
            token=self._parse_endpoint(merged.get("token"), substitutions),
            openid=self._parse_openid(merged.get("openid"), substitutions),
        )

    def _parse_endpoint(self, raw: Any, substitutions: Dict[str, str]) -> Optional[EndpointConfig]:
        if raw is None:
            return None
        if isinstance(raw, str):
            raw = {"url": raw}
        auth_method = raw.get("auth_method")
        return EndpointConfig(
            url=_substitute(raw.get("url"), substitutions),
            auth_method=AuthMethod(auth_method) if auth_method else None,
        )

    def _parse_openid(self, raw: Any, substitutions: Dict[str, str]) -> Optional[OpenIdConfig]:
        if raw is None:
            return None
        if isinstance(raw, str):
            raw = {"issuer": raw}
        return OpenIdConfig(
            issuer=_substitute(raw.get("issuer"), substitutions),
            configuration_path=raw.get("configuration_path", DEFAULT_CONFIGURATION_PATH),
            token=self._parse_endpoint(raw.get("token"), substitutions),
        )

    def _expand_env_vars(self, obj: Any) -> Any:
        """Recursively replace ${VAR_NAME} with env var values."""
        if isinstance(obj, str):
            return re.sub(r"\$\{(\w+)\}", lambda m: os.environ.get(m.group(1), ""), obj)
        elif isinstance(obj, dict):
            return {k: self._expand_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._expand_env_vars(i) for i in obj]
        return obj

    def get_provider(self, name: str) -> Optional[OAuthClientConfig]:
        """Get provider config by name."""
        self.load()
        return self._providers.get(name)

    def list_providers(self) -> List[Dict[str, str]]:
        """
        List enabled providers (for frontend buttons).

        Returns:
            Provider info list without secrets
        """
        self.load()
        return [
            {"id": name, "display_name": provider.label}
            for name, provider in self._providers.items()
            if provider.enabled
        ]

    def get_all_providers(self) -> Dict[str, OAuthClientConfig]:
        """Get all provider configs, disabled ones included."""
        self.load()
        return dict(self._providers)

    def is_provider_enabled(self, name: str) -> bool:
        """Check if provider is enabled."""
        provider = self.get_provider(name)
        return provider is not None and provider.enabled


def _parse_bool(value: Any) -> bool:
    """YAML booleans pass through; env-expanded strings are parsed."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off", ""):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _substitute(value: Optional[str], substitutions: Dict[str, str]) -> Optional[str]:
    if value is None:
        return None
    for key, replacement in substitutions.items():
        value = value.replace("{" + key + "}", replacement)
    return value


# Global config loader (lazy init)
_oauth_config: Optional[OAuthConfigLoader] = None


def get_oauth_config() -> OAuthConfigLoader:
    """Get global OAuth config loader."""
    global _oauth_config
    if _oauth_config is None:
        from oauth_login.core.settings import settings

        _oauth_config = OAuthConfigLoader(settings.oauth_config_path)
    return _oauth_config


def reload_oauth_config() -> None:
    """
    Reload OAuth config.

    The routes, cached clients and password grants of an application built by
    `create_app` are fixed when it is created and started; a reload takes
    effect for applications created afterwards.
    """
    config = get_oauth_config()
    config.load(force_reload=True)
