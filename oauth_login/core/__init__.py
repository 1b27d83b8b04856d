"""Core module - settings, login events and the OAuth pipeline"""

from .settings import settings

__all__ = ["settings"]
