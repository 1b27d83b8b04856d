"""
Application settings
"""

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (directory containing the oauth_login package)
BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BASE_DIR / ".env"


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = Field(default="OAuth Login Service", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(
        default=False,
        validation_alias=AliasChoices("DEBUG", "APP_DEBUG"),
        description="Enable debug mode",
    )
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "ENV", "APP_ENV"),
        description="Application environment (development, staging, production)",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "APP_LOG_LEVEL"),
        description="Minimum loguru level",
    )
    log_dir: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("LOG_DIR", "APP_LOG_DIR"),
        description="Directory for rotating log files; console only when unset",
    )

    # OAuth providers
    oauth_config_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OAUTH_CONFIG_PATH", "OAUTH_PROVIDERS_FILE"),
        description="Path of the provider YAML file; defaults to config/oauth_providers.yaml",
    )
    login_success_url: str = Field(default="/", description="Redirect target after a successful login")
    login_failure_url: str = Field(default="/login", description="Redirect target after a failed login")
    state_validation_enabled: bool = Field(
        default=True,
        description="Validate the state parameter round-tripped through the authorization request",
    )
    state_cookie_name: str = Field(default="OAUTH2_STATE", description="Cookie holding the recorded state")
    nonce_cookie_name: str = Field(default="OPENID_NONCE", description="Cookie holding the recorded nonce")
    http_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for token endpoint, discovery and JWKS requests",
    )


settings = Settings()
