"""
API routes

- /_auth/... and /login: OIDC login flow (oauth.py)
"""
from .oauth import install_callback_routes, router as oauth_router

__all__ = ["oauth_router", "install_callback_routes"]
