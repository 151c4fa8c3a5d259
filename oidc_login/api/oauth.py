"""
OIDC login API endpoints.

- GET /_auth/providers - list registered providers
- GET /login - one fresh login link per provider for the caller's session
- GET /_auth/{provider}/login - redirect to the provider's authorization page
- GET /me - user bound to the caller's session

Callback routes (one per provider, default `/_auth/{provider}/callback`) are
added by `install_callback_routes` once the providers are registered.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from loguru import logger
from pydantic import BaseModel
from starlette.routing import BaseRoute

from oidc_login.common.dependencies import (
    attach_session_cookie,
    get_login_service,
    get_registry,
    get_session,
    get_session_store,
    get_settings,
)
from oidc_login.common.exceptions import NotFoundException, ProviderNotFoundError, UnauthorizedException
from oidc_login.core.oauth.models import get_user
from oidc_login.core.oauth.registry import ProviderRegistry, render_callback_url
from oidc_login.core.session import MemorySession, SessionStore
from oidc_login.core.settings import Settings
from oidc_login.services.callback_service import CallbackDispatcher
from oidc_login.services.login_service import LoginService

LOG_PREFIX = "[OAuthAPI]"
CALLBACK_ROUTE_PREFIX = "oidc_callback:"

router = APIRouter(tags=["OIDC"])


# ==================== Response Models ====================


class ProviderInfo(BaseModel):
    """Provider info (no secrets)."""

    name: str
    issuer: str


class ProvidersResponse(BaseModel):
    providers: List[ProviderInfo]


class LoginLinkInfo(BaseModel):
    provider: str
    url: str


class LoginLinksResponse(BaseModel):
    session_id: str
    providers: List[LoginLinkInfo]


# ==================== API Endpoints ====================


@router.get("/_auth/providers", response_model=ProvidersResponse)
async def list_providers(registry: ProviderRegistry = Depends(get_registry)) -> ProvidersResponse:
    """List registered providers, used by frontends to render login buttons."""
    return ProvidersResponse(
        providers=[ProviderInfo(name=p.name, issuer=p.issuer) for p in registry.list()]
    )


@router.get("/login")
async def login_page(
    request: Request,
    session: MemorySession = Depends(get_session),
    login_service: LoginService = Depends(get_login_service),
) -> Response:
    """
    Login links for the current session.

    Each call mints new states, so links from an earlier render stay single-use.
    """
    links = login_service.login_links(session)
    body = LoginLinksResponse(
        session_id=session.id,
        providers=[LoginLinkInfo(provider=link.provider, url=link.url) for link in links],
    )
    return attach_session_cookie(request, JSONResponse(body.model_dump()))


@router.get("/_auth/{provider}/login")
async def start_login(
    provider: str,
    request: Request,
    registry: ProviderRegistry = Depends(get_registry),
    login_service: LoginService = Depends(get_login_service),
) -> Response:
    """Start the authorization code flow with `provider`."""
    # No session for requests that cannot start a login
    if provider not in registry:
        raise NotFoundException(f"OIDC provider '{provider}' not found")

    session = get_session(request)
    try:
        authorization_url = login_service.build_login_url(provider, session)
    except ProviderNotFoundError:
        raise NotFoundException(f"OIDC provider '{provider}' not found")

    logger.info(f"{LOG_PREFIX} Redirecting to {provider} authorization")
    return attach_session_cookie(request, RedirectResponse(url=authorization_url, status_code=302))


@router.get("/me")
async def current_user(
    request: Request,
    settings: Settings = Depends(get_settings),
    sessions: SessionStore = Depends(get_session_store),
) -> Response:
    """User bound to the caller's session."""
    session = sessions.get(request.cookies.get(settings.session_cookie_name))
    user = get_user(session) if session is not None else None
    if user is None:
        raise UnauthorizedException("Not logged in")
    data = user.model_dump(mode="json", by_alias=True)
    data["display_name"] = user.display_name
    return JSONResponse(data)


# ==================== Callback routes ====================


def _callback_endpoint(provider_name: str, dispatcher: CallbackDispatcher, dest_url: Optional[str]):
    async def oidc_callback(
        state: Optional[str] = Query(None, description="Correlation state issued at login"),
        code: Optional[str] = Query(None, description="Authorization code"),
        error: Optional[str] = Query(None, description="Error returned by the provider"),
        error_description: Optional[str] = Query(None, description="Error description"),
    ) -> Response:
        result = await dispatcher.handle(
            provider_name,
            state=state,
            code=code,
            error=error,
            error_description=error_description,
        )
        if dest_url:
            logger.info(f"{LOG_PREFIX} Redirecting to {dest_url}")
            return RedirectResponse(url=dest_url, status_code=302)
        return JSONResponse(result.public_dict())

    return oidc_callback


def install_callback_routes(
    app: FastAPI,
    registry: ProviderRegistry,
    dispatcher: CallbackDispatcher,
    *,
    template: str,
    base_url: str = "",
    dest_url: Optional[str] = None,
) -> List[str]:
    """
    Add one callback route per registered provider.

    The redirect URL is `template` rendered for the provider (see
    `render_callback_url`) and is fixed on the provider; the route path is its path.
    Routes from an earlier installation are replaced. Returns the installed paths.
    """
    stale = {CALLBACK_ROUTE_PREFIX + p.name for p in registry.list()}
    routes: List[BaseRoute] = app.router.routes
    routes[:] = [r for r in routes if getattr(r, "name", None) not in stale]

    paths = []
    for provider in registry.list():
        redirect_url = render_callback_url(template, provider.name, base_url)
        provider = registry.set_redirect_url(provider.name, redirect_url)
        path = provider.callback_path or "/"

        logger.info(
            f"{LOG_PREFIX} Adding {provider.name!r} provider with {redirect_url!r} callback url, "
            f"{dest_url!r} as dest url"
        )
        app.add_api_route(
            path,
            _callback_endpoint(provider.name, dispatcher, dest_url),
            methods=["GET"],
            name=CALLBACK_ROUTE_PREFIX + provider.name,
            tags=["OIDC"],
            response_class=JSONResponse,
        )
        paths.append(path)
    return paths
