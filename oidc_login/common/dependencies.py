"""
Shared dependencies

Components live on `app.state` (built in the application lifespan).
"""
from fastapi import Request, Response

from oidc_login.core.oauth.registry import ProviderRegistry
from oidc_login.core.session import MemorySession, SessionStore
from oidc_login.core.settings import Settings
from oidc_login.services.login_service import LoginService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_login_service(request: Request) -> LoginService:
    return request.app.state.login_service


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_session(request: Request) -> MemorySession:
    """
    Session addressed by the session cookie, created when missing.

    A new session is remembered on `request.state.new_session`; routes pass their
    response through `attach_session_cookie` so the browser gets the cookie.
    """
    settings = get_settings(request)
    store = get_session_store(request)
    session, created = store.get_or_create(request.cookies.get(settings.session_cookie_name))
    request.state.new_session = session if created else None
    return session


def attach_session_cookie(request: Request, response: Response) -> Response:
    """Set the session cookie on `response` if this request created the session."""
    session = getattr(request.state, "new_session", None)
    if session is None:
        return response
    settings = get_settings(request)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session.id,
        httponly=True,
        samesite=settings.cookie_samesite,
        secure=settings.cookie_secure_effective,
        path="/",
    )
    return response
