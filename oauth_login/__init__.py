"""OAuth 2.0 / OpenID Connect login service."""

__version__ = "0.1.0"
