"""
OAuth/OIDC login module.

Module layout:
- config.py: provider config loader (ProviderConfig, OAuthConfigLoader)
- discovery.py: OIDC Discovery (OIDCDiscovery, ProviderMetadata)
- verifier.py: ID token verification (IDTokenVerifier)
- registry.py: registered providers (Provider, ProviderRegistry)
- correlation.py: pending logins by state (CorrelationStore)
- models.py: token, user info and auth result models
"""

from oidc_login.core.oauth.config import OAuthConfigLoader, ProviderConfig
from oidc_login.core.oauth.correlation import CorrelationStore, PendingLogin
from oidc_login.core.oauth.discovery import DiscoveryError, OIDCDiscovery, ProviderMetadata
from oidc_login.core.oauth.models import (
    AUTH_TOKEN_ATTR,
    AUTH_USER_ATTR,
    AuthResult,
    OAuth2Token,
    UserInfo,
    get_user,
)
from oidc_login.core.oauth.registry import (
    WELL_KNOWN_ISSUERS,
    Provider,
    ProviderRegistry,
    render_callback_url,
)
from oidc_login.core.oauth.verifier import ALLOWED_SIGNING_ALGS, IDTokenVerificationError, IDTokenVerifier

__all__ = [
    "ALLOWED_SIGNING_ALGS",
    "AUTH_TOKEN_ATTR",
    "AUTH_USER_ATTR",
    "AuthResult",
    "CorrelationStore",
    "DiscoveryError",
    "IDTokenVerificationError",
    "IDTokenVerifier",
    "OAuth2Token",
    "OAuthConfigLoader",
    "OIDCDiscovery",
    "PendingLogin",
    "Provider",
    "ProviderConfig",
    "ProviderMetadata",
    "ProviderRegistry",
    "UserInfo",
    "WELL_KNOWN_ISSUERS",
    "get_user",
    "render_callback_url",
]
