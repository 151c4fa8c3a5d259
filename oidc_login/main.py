"""
FastAPI Main Application
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator, Iterable, Optional

import httpx
from fastapi import FastAPI
from loguru import logger

from oidc_login.api import install_callback_routes, oauth_router
from oidc_login.common.exceptions import DiscoveryFailedError, register_exception_handlers
from oidc_login.common.logging import LoggingMiddleware, setup_logging
from oidc_login.core.oauth.config import OAuthConfigLoader, ProviderConfig
from oidc_login.core.oauth.correlation import CorrelationStore
from oidc_login.core.oauth.discovery import OIDCDiscovery
from oidc_login.core.oauth.registry import ProviderRegistry
from oidc_login.core.session import SessionStore
from oidc_login.core.settings import Settings, settings as default_settings
from oidc_login.services.callback_service import CallbackDispatcher, PostAuthHook
from oidc_login.services.login_service import LoginService


async def register_providers(registry: ProviderRegistry, configs: Iterable[ProviderConfig]) -> int:
    """
    Register configured providers.

    A provider whose discovery fails is logged and skipped so the others keep
    working; any other registration error aborts start-up.
    """
    registered = 0
    for config in configs:
        try:
            await registry.register(
                config.name,
                config.issuer,
                config.client_id,
                config.client_secret,
                *config.scopes,
                tenant=config.tenant,
                token_auth_method=config.token_auth_method,
            )
            registered += 1
        except DiscoveryFailedError as e:
            logger.error(f"   ⚠️  Skipping provider {config.name!r}: {e}")
    return registered


async def _sweep_expired(store: CorrelationStore, sessions: SessionStore, interval: float) -> None:
    """Periodically drop expired pending logins and idle sessions."""
    while True:
        await asyncio.sleep(interval)
        store.sweep()
        sessions.sweep()


def create_app(
    settings: Optional[Settings] = None,
    *,
    provider_configs: Optional[Iterable[ProviderConfig]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    on_authenticated: Optional[PostAuthHook] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: defaults to the environment-derived settings
        provider_configs: providers to register; read from `settings.oauth_config_file` when None
        http_client: client for discovery, JWKS and token calls; owned by the app when None
        on_authenticated: post-authentication hook, called with the session
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """Application Lifecycle"""
        setup_logging(settings.log_level, settings.log_dir)
        logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"   Environment: {settings.environment}")
        logger.info(f"   Debug: {settings.debug}")

        client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        registry = ProviderRegistry(
            OIDCDiscovery(client, timeout=settings.http_timeout_seconds),
            id_token_leeway=settings.id_token_leeway_seconds,
        )
        store = CorrelationStore(ttl_seconds=settings.state_ttl_seconds)
        sessions = SessionStore(idle_ttl_seconds=settings.session_idle_ttl_seconds)

        configs = provider_configs
        if configs is None:
            configs = OAuthConfigLoader(settings.oauth_config_file).load()
        count = await register_providers(registry, configs)
        logger.info(f"   ✓ {count} OIDC providers registered")

        dispatcher = CallbackDispatcher(
            registry,
            store,
            http_client=client,
            timeout=settings.http_timeout_seconds,
            deadline=settings.callback_timeout_seconds,
            on_authenticated=on_authenticated,
        )
        install_callback_routes(
            app,
            registry,
            dispatcher,
            template=settings.callback_url_template,
            base_url=settings.base_url,
            dest_url=settings.dest_url,
        )

        app.state.settings = settings
        app.state.registry = registry
        app.state.correlation_store = store
        app.state.sessions = sessions
        app.state.login_service = LoginService(registry, store)
        app.state.callback_dispatcher = dispatcher

        sweeper = None
        expiring = store.ttl_seconds or sessions.idle_ttl_seconds
        if expiring and settings.state_sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(
                _sweep_expired(store, sessions, settings.state_sweep_interval_seconds)
            )

        yield

        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
        if http_client is None:
            await client.aclose()
        logger.info("👋 Application shutdown")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Multi-provider OpenID Connect login for application sessions",
        docs_url="/docs" if settings.debug or settings.environment == "development" else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.add_middleware(LoggingMiddleware)
    app.include_router(oauth_router)

    @app.get("/", tags=["Root"])
    async def root():
        """Root path, health check"""
        return {"status": "ok", "providers": len(app.state.registry)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "oidc_login.main:app",
        host=default_settings.host,
        port=default_settings.port,
    )
