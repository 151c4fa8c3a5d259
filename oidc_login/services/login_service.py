"""
Login initiation.

Every login URL carries a freshly minted state bound to the caller's session.
URLs must be rebuilt on each render of the login page, never cached.
"""

from dataclasses import dataclass
from typing import List

from loguru import logger

from oidc_login.core.oauth.correlation import CorrelationStore
from oidc_login.core.oauth.registry import ProviderRegistry
from oidc_login.core.session import Session

LOG_PREFIX = "[LoginService]"


@dataclass(frozen=True)
class LoginLink:
    provider: str
    url: str


class LoginService:
    """Builds provider authorization URLs and registers the pending logins."""

    def __init__(self, registry: ProviderRegistry, store: CorrelationStore):
        self.registry = registry
        self.store = store

    def build_login_url(self, provider_name: str, session: Session) -> str:
        """
        Authorization URL for `provider_name`, correlated with `session`.

        Creates exactly one pending login per call.

        Raises:
            ProviderNotFoundError: unknown provider
            RuntimeError: the provider's callback route is not installed yet
        """
        provider = self.registry.get(provider_name)
        if not provider.redirect_url:
            raise RuntimeError(f"Provider {provider.name!r} has no redirect URL, callback routes are not installed")
        state = self.store.begin(session, provider=provider.name)
        logger.debug(f"{LOG_PREFIX} Login started for session {session.id[:8]}... via {provider.name}")
        return provider.authorization_url(state)

    def login_links(self, session: Session) -> List[LoginLink]:
        """One fresh login link per registered provider, in registration order."""
        return [
            LoginLink(provider=provider.name, url=self.build_login_url(provider.name, session))
            for provider in self.registry.list()
            if provider.redirect_url
        ]
