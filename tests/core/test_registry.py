"""
Tests for provider registration, discovery and callback URL rendering.
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from oidc_login.common.exceptions import (
    AlreadyRegisteredError,
    DiscoveryFailedError,
    ProviderNotFoundError,
    UnknownIssuerError,
)
from oidc_login.core.oauth.discovery import OIDCDiscovery
from oidc_login.core.oauth.registry import (
    ProviderRegistry,
    normalize_scopes,
    render_callback_url,
)

from tests.conftest import CLIENT_ID, CLIENT_SECRET, ISSUER

# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_normalize_scopes_puts_mandatory_scopes_first():
    assert normalize_scopes([]) == ("openid", "email")
    assert normalize_scopes(["profile", "email", "openid", "profile"]) == ("openid", "email", "profile")
    assert normalize_scopes(["", " groups "]) == ("openid", "email", "groups")


def test_render_callback_url_placeholders():
    template = "{base_url}/_auth/{provider_lower}/callback?p={provider_upper}&n={provider}"

    url = render_callback_url(template, "Google", "https://app.example/")

    assert url == "https://app.example/_auth/google/callback?p=GOOGLE&n=Google"


# ---------------------------------------------------------------------------
# register
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_register_discovers_endpoints(registry, idp):
    provider = await registry.register("Test", ISSUER, CLIENT_ID, CLIENT_SECRET, "profile")

    assert provider.name == "Test"
    assert provider.issuer == ISSUER
    assert provider.scopes == ("openid", "email", "profile")
    assert provider.metadata.token_endpoint == f"{ISSUER}/token"
    assert provider.metadata.jwks_uri == f"{ISSUER}/jwks"
    assert provider.verifier.client_id == CLIENT_ID
    assert provider.redirect_url is None
    assert "Test" in registry
    assert len(registry) == 1
    assert idp.discovery_requests == 1


@pytest.mark.asyncio
async def test_register_duplicate_name_fails(registry):
    await registry.register("Test", ISSUER, CLIENT_ID, CLIENT_SECRET)

    with pytest.raises(AlreadyRegisteredError) as exc_info:
        await registry.register("Test", ISSUER, "other", "other")

    assert exc_info.value.name == "Test"
    assert len(registry) == 1
    assert registry.get("Test").client_id == CLIENT_ID


@pytest.mark.asyncio
async def test_register_without_issuer_requires_well_known_name(registry):
    with pytest.raises(UnknownIssuerError):
        await registry.register("Nobody", None, CLIENT_ID, CLIENT_SECRET)

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_register_well_known_issuer():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(
            200,
            json={
                "issuer": "https://accounts.google.com",
                "authorization_endpoint": "https://accounts.google.com/o/oauth2/v2/auth",
                "token_endpoint": "https://oauth2.googleapis.com/token",
                "jwks_uri": "https://www.googleapis.com/oauth2/v3/certs",
            },
        )

    registry = ProviderRegistry(OIDCDiscovery(httpx.AsyncClient(transport=httpx.MockTransport(handler))))

    provider = await registry.register("Google", "", CLIENT_ID, CLIENT_SECRET)

    assert provider.issuer == "https://accounts.google.com"
    assert requested == ["https://accounts.google.com/.well-known/openid-configuration"]


@pytest.mark.asyncio
async def test_register_microsoft_fills_tenant():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(
            200,
            json={
                "issuer": "https://sts.windows.net/contoso/",
                "authorization_endpoint": "https://login.microsoftonline.com/contoso/oauth2/authorize",
                "token_endpoint": "https://login.microsoftonline.com/contoso/oauth2/token",
                "jwks_uri": "https://login.microsoftonline.com/common/discovery/keys",
            },
        )

    registry = ProviderRegistry(OIDCDiscovery(httpx.AsyncClient(transport=httpx.MockTransport(handler))))

    provider = await registry.register("Microsoft", None, CLIENT_ID, CLIENT_SECRET, tenant="contoso")

    assert provider.issuer == "https://sts.windows.net/contoso/"
    assert requested == ["https://sts.windows.net/contoso/.well-known/openid-configuration"]


@pytest.mark.asyncio
async def test_register_discovery_http_error(registry, idp):
    idp.discovery_status = 503

    with pytest.raises(DiscoveryFailedError) as exc_info:
        await registry.register("Test", ISSUER, CLIENT_ID, CLIENT_SECRET)

    assert exc_info.value.issuer == ISSUER
    assert "Test" not in registry


@pytest.mark.asyncio
async def test_register_discovery_issuer_mismatch(registry, idp):
    idp.discovery_issuer = "https://evil.example"

    with pytest.raises(DiscoveryFailedError):
        await registry.register("Test", ISSUER, CLIENT_ID, CLIENT_SECRET)


@pytest.mark.asyncio
async def test_register_discovery_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    registry = ProviderRegistry(OIDCDiscovery(httpx.AsyncClient(transport=httpx.MockTransport(handler))))

    with pytest.raises(DiscoveryFailedError):
        await registry.register("Test", ISSUER, CLIENT_ID, CLIENT_SECRET)


@pytest.mark.asyncio
async def test_register_rejects_unknown_token_auth_method(registry):
    with pytest.raises(ValueError):
        await registry.register("Test", ISSUER, CLIENT_ID, CLIENT_SECRET, token_auth_method="private_key_jwt")


@pytest.mark.asyncio
async def test_list_preserves_registration_order(registry):
    for name in ("B", "A", "C"):
        await registry.register(name, ISSUER, CLIENT_ID, CLIENT_SECRET)

    assert [p.name for p in registry.list()] == ["B", "A", "C"]


def test_get_unknown_provider(registry):
    with pytest.raises(ProviderNotFoundError):
        registry.get("missing")


# ---------------------------------------------------------------------------
# redirect URL / authorization URL
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_authorization_url_requires_redirect_url(registry):
    provider = await registry.register("Test", ISSUER, CLIENT_ID, CLIENT_SECRET)

    with pytest.raises(RuntimeError):
        provider.authorization_url("state")


@pytest.mark.asyncio
async def test_authorization_url_parameters(registry):
    await registry.register("Test", ISSUER, CLIENT_ID, CLIENT_SECRET, "profile")
    provider = registry.set_redirect_url("Test", "https://app.example/_auth/Test/callback")

    url = urlparse(provider.authorization_url("abc"))
    query = parse_qs(url.query)

    assert f"{url.scheme}://{url.netloc}{url.path}" == f"{ISSUER}/authorize"
    assert query == {
        "client_id": [CLIENT_ID],
        "redirect_uri": ["https://app.example/_auth/Test/callback"],
        "response_type": ["code"],
        "scope": ["openid email profile"],
        "state": ["abc"],
    }
    assert provider.callback_path == "/_auth/Test/callback"
    assert registry.get("Test").redirect_url == "https://app.example/_auth/Test/callback"
