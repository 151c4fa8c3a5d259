"""
Registry of the configured identity providers.

Providers are registered once at start-up (discovery happens then) and read
concurrently afterwards. Registration order is preserved for login pages.
"""

import dataclasses
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlencode, urlparse

from loguru import logger

from oidc_login.common.exceptions import (
    AlreadyRegisteredError,
    DiscoveryFailedError,
    ProviderNotFoundError,
    UnknownIssuerError,
)
from oidc_login.core.oauth.discovery import DiscoveryError, OIDCDiscovery, ProviderMetadata
from oidc_login.core.oauth.verifier import IDTokenVerifier

LOG_PREFIX = "[ProviderRegistry]"

SCOPE_OPENID = "openid"
SCOPE_EMAIL = "email"
MANDATORY_SCOPES = (SCOPE_OPENID, SCOPE_EMAIL)

TOKEN_AUTH_METHODS = ("client_secret_basic", "client_secret_post")

# Issuers we know about, so only client credentials need configuring.
# Microsoft takes a {tenant} placeholder.
WELL_KNOWN_ISSUERS = {
    "Google": "https://accounts.google.com",
    "eBay": "https://openidconnect.ebay.com",
    "SalesForce": "https://login.salesforce.com",
    "Microsoft": "https://sts.windows.net/{tenant}/",
}
DEFAULT_TENANT = "common"


def normalize_scopes(extra_scopes: Iterable[str]) -> Tuple[str, ...]:
    """Mandatory scopes first, then the extra ones in order, without duplicates."""
    scopes: List[str] = []
    for scope in (*MANDATORY_SCOPES, *extra_scopes):
        scope = scope.strip()
        if scope and scope not in scopes:
            scopes.append(scope)
    return tuple(scopes)


def render_callback_url(template: str, provider_name: str, base_url: str = "") -> str:
    """
    Expand a callback URL template for one provider.

    Placeholders: {base_url}, {provider}, {provider_lower}, {provider_upper}.
    """
    return template.format(
        base_url=base_url.rstrip("/"),
        provider=provider_name,
        provider_lower=provider_name.lower(),
        provider_upper=provider_name.upper(),
    )


@dataclass(frozen=True)
class Provider:
    """A registered identity provider."""

    name: str
    issuer: str
    client_id: str
    client_secret: str = field(repr=False)
    scopes: Tuple[str, ...]
    metadata: ProviderMetadata = field(repr=False)
    verifier: IDTokenVerifier = field(repr=False, compare=False)
    token_auth_method: str = "client_secret_basic"
    redirect_url: Optional[str] = None

    @property
    def callback_path(self) -> Optional[str]:
        if not self.redirect_url:
            return None
        return urlparse(self.redirect_url).path

    def authorization_url(self, state: str) -> str:
        """Authorization endpoint URL for the code flow, bound to `state`."""
        if not self.redirect_url:
            raise RuntimeError(f"Provider {self.name!r} has no redirect URL, callback routes are not installed")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        endpoint = self.metadata.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"


class ProviderRegistry:
    """Append-only provider registry."""

    def __init__(self, discovery: OIDCDiscovery, *, id_token_leeway: int = 0):
        self.discovery = discovery
        self.id_token_leeway = id_token_leeway
        self._lock = threading.Lock()
        self._providers: List[Provider] = []

    def _index(self, name: str) -> int:
        for i, provider in enumerate(self._providers):
            if provider.name == name:
                return i
        return -1

    async def register(
        self,
        name: str,
        issuer: Optional[str],
        client_id: str,
        client_secret: str,
        *extra_scopes: str,
        tenant: Optional[str] = None,
        token_auth_method: str = "client_secret_basic",
    ) -> Provider:
        """
        Discover `issuer` and register a provider under `name`.

        An empty issuer is looked up in `WELL_KNOWN_ISSUERS`. The lock is not held
        during discovery; the duplicate check runs again before appending.

        Raises:
            AlreadyRegisteredError: `name` is taken
            UnknownIssuerError: no issuer and `name` is not well-known
            DiscoveryFailedError: discovery of the issuer failed
        """
        if not name:
            raise ValueError("Provider name must not be empty")
        if token_auth_method not in TOKEN_AUTH_METHODS:
            raise ValueError(f"Unsupported token_auth_method {token_auth_method!r}")

        if not issuer:
            issuer = WELL_KNOWN_ISSUERS.get(name)
            if not issuer:
                raise UnknownIssuerError(name)
            issuer = issuer.replace("{tenant}", tenant or DEFAULT_TENANT)

        with self._lock:
            if self._index(name) >= 0:
                raise AlreadyRegisteredError(name)

        try:
            metadata = await self.discovery.discover(issuer)
        except DiscoveryError as e:
            raise DiscoveryFailedError(name, issuer, e) from e

        provider = Provider(
            name=name,
            issuer=issuer,
            client_id=client_id,
            client_secret=client_secret,
            scopes=normalize_scopes(extra_scopes),
            metadata=metadata,
            verifier=metadata.new_verifier(client_id, leeway=self.id_token_leeway),
            token_auth_method=token_auth_method,
        )

        with self._lock:
            if self._index(name) >= 0:
                raise AlreadyRegisteredError(name)
            self._providers.append(provider)

        logger.info(f"{LOG_PREFIX} Registered provider {name!r} ({issuer}), scopes={' '.join(provider.scopes)}")
        return provider

    def list(self) -> List[Provider]:
        """Snapshot of the providers in registration order."""
        with self._lock:
            return list(self._providers)

    def get(self, name: str) -> Provider:
        with self._lock:
            i = self._index(name)
            if i < 0:
                raise ProviderNotFoundError(name)
            return self._providers[i]

    def set_redirect_url(self, name: str, redirect_url: str) -> Provider:
        """Fix the redirect URL of a provider; done once when its callback route is installed."""
        with self._lock:
            i = self._index(name)
            if i < 0:
                raise ProviderNotFoundError(name)
            provider = dataclasses.replace(self._providers[i], redirect_url=redirect_url)
            self._providers[i] = provider
            return provider

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return isinstance(name, str) and self._index(name) >= 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)
