"""
Service layer
"""

from .password_login_service import PasswordLoginService

__all__ = ["PasswordLoginService"]
