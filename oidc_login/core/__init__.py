"""Core module - settings, sessions and the OAuth/OIDC machinery"""

from .settings import settings

__all__ = ["settings"]
