"""
Service layer
"""

from .callback_service import CallbackDispatcher, PostAuthHook
from .login_service import LoginLink, LoginService

__all__ = [
    "CallbackDispatcher",
    "PostAuthHook",
    "LoginLink",
    "LoginService",
]
