"""
OIDC Discovery.

Resolves an issuer URL into its endpoints via
`{issuer}/.well-known/openid-configuration` and hands out ID token verifiers
bound to the discovered JWKS.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from loguru import logger

from oidc_login.core.oauth.verifier import IDTokenVerifier

LOG_PREFIX = "[OIDCDiscovery]"

REQUIRED_FIELDS = ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")


class DiscoveryError(Exception):
    """The issuer could not be resolved into a usable provider configuration."""


@dataclass(frozen=True)
class ProviderMetadata:
    """Endpoints of one OIDC provider, resolved once at registration."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    userinfo_endpoint: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    http_client: Optional[httpx.AsyncClient] = field(default=None, compare=False, repr=False)
    timeout: float = field(default=10.0, compare=False, repr=False)

    @classmethod
    def from_document(
        cls,
        document: Dict[str, Any],
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> "ProviderMetadata":
        missing = [k for k in REQUIRED_FIELDS if not document.get(k)]
        if missing:
            raise DiscoveryError(f"discovery document lacks {', '.join(missing)}")
        return cls(
            issuer=document["issuer"],
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            jwks_uri=document["jwks_uri"],
            userinfo_endpoint=document.get("userinfo_endpoint"),
            raw=document,
            http_client=http_client,
            timeout=timeout,
        )

    def new_verifier(self, client_id: str, *, leeway: int = 0) -> IDTokenVerifier:
        """Verifier accepting ID tokens from this issuer addressed to `client_id`."""
        return IDTokenVerifier(
            issuer=self.issuer,
            client_id=client_id,
            jwks_uri=self.jwks_uri,
            http_client=self.http_client,
            timeout=self.timeout,
            leeway=leeway,
        )


class OIDCDiscovery:
    """Discovery adapter with a per-issuer cache."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._http_client = http_client
        self.timeout = timeout
        self._cache: Dict[str, ProviderMetadata] = {}

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def discover(self, issuer: str) -> ProviderMetadata:
        """
        Fetch and validate the discovery document of `issuer`.

        Raises:
            DiscoveryError: network failure, non-200 answer, invalid document, or an
                `issuer` field that does not match the requested issuer
        """
        if issuer in self._cache:
            return self._cache[issuer]

        discovery_url = f"{issuer.rstrip('/')}/.well-known/openid-configuration"
        try:
            async with self._client() as client:
                response = await client.get(discovery_url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.error(f"{LOG_PREFIX} OIDC Discovery failed for {issuer}: {e}")
            raise DiscoveryError(f"{discovery_url}: {e}") from e

        if response.status_code != 200:
            raise DiscoveryError(f"{discovery_url}: HTTP {response.status_code}")
        try:
            document = response.json()
        except ValueError as e:
            raise DiscoveryError(f"{discovery_url}: response is not JSON") from e
        if not isinstance(document, dict):
            raise DiscoveryError(f"{discovery_url}: unexpected document")

        if str(document.get("issuer", "")).rstrip("/") != issuer.rstrip("/"):
            raise DiscoveryError(
                f"issuer did not match the issuer returned by provider, "
                f"expected {issuer!r} got {document.get('issuer')!r}"
            )

        metadata = ProviderMetadata.from_document(document, http_client=self._http_client, timeout=self.timeout)
        self._cache[issuer] = metadata
        logger.info(f"{LOG_PREFIX} OIDC Discovery successful: {issuer}")
        return metadata
