"""
ID token verification.

Signature, issuer, audience and expiry are checked with PyJWT against the
provider's JWKS. Only asymmetric algorithms from `ALLOWED_SIGNING_ALGS` are
accepted; `none` and HMAC tokens are rejected before any key is looked up.
"""

import asyncio
import hmac
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import jwt
from jwt.algorithms import get_default_algorithms
from jwt.utils import base64url_encode
from loguru import logger

LOG_PREFIX = "[IDTokenVerifier]"

ALLOWED_SIGNING_ALGS = (
    "RS256", "RS384", "RS512",
    "ES256", "ES384", "ES512",
    "PS256", "PS384", "PS512",
)


class IDTokenVerificationError(Exception):
    """The ID token is malformed, expired, mis-signed or not meant for us."""


def at_hash(access_token: str, alg: str) -> str:
    """OIDC `at_hash`: left half of the access token digest, base64url without padding."""
    digest = get_default_algorithms()[alg].compute_hash_digest(access_token.encode("ascii"))
    return base64url_encode(digest[: len(digest) // 2]).decode("ascii")


class IDTokenVerifier:
    """
    Verifies ID tokens issued by one provider for one client.

    The JWKS is fetched lazily and cached; an unknown `kid` triggers a single
    refetch to follow key rotation.
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        jwks_uri: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        leeway: int = 0,
        allowed_algs: tuple = ALLOWED_SIGNING_ALGS,
    ):
        self.issuer = issuer
        self.client_id = client_id
        self.jwks_uri = jwks_uri
        self.timeout = timeout
        self.leeway = leeway
        self.allowed_algs = tuple(a for a in allowed_algs if a in ALLOWED_SIGNING_ALGS)
        self._http_client = http_client
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_lock = asyncio.Lock()

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def _fetch_jwks(self) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(self.jwks_uri, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise IDTokenVerificationError(f"JWKS fetch failed: {e}") from e
        if response.status_code != 200:
            raise IDTokenVerificationError(f"JWKS fetch failed: {response.status_code}")
        try:
            jwks = response.json()
        except ValueError as e:
            raise IDTokenVerificationError("JWKS response is not JSON") from e
        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise IDTokenVerificationError("JWKS response has no keys")
        logger.debug(f"{LOG_PREFIX} Fetched {len(jwks['keys'])} keys from {self.jwks_uri}")
        return jwks

    async def _keys(self, refresh: bool = False) -> List[Dict[str, Any]]:
        async with self._jwks_lock:
            if self._jwks is None or refresh:
                self._jwks = await self._fetch_jwks()
            return list(self._jwks["keys"])

    @staticmethod
    def _candidates(keys: List[Dict[str, Any]], kid: Optional[str], alg: str) -> List[Dict[str, Any]]:
        if kid is not None:
            return [k for k in keys if k.get("kid") == kid]
        return [k for k in keys if k.get("alg") in (None, alg) and k.get("use") in (None, "sig")]

    def _decode(self, raw_id_token: str, jwk: Dict[str, Any], alg: str) -> Dict[str, Any]:
        try:
            key = get_default_algorithms()[alg].from_jwk(jwk)
        except (jwt.InvalidKeyError, KeyError, TypeError, ValueError) as e:
            raise jwt.InvalidSignatureError(f"unusable JWK kid={jwk.get('kid')!r}: {e}") from e
        return jwt.decode(
            raw_id_token,
            key,
            algorithms=[alg],
            audience=self.client_id,
            issuer=self.issuer,
            leeway=self.leeway,
            options={"require": ["exp", "iss", "aud"]},
        )

    async def verify(self, raw_id_token: str, access_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Verify `raw_id_token` and return its claims.

        `access_token` is compared against the `at_hash` claim when the token carries one.

        Raises:
            IDTokenVerificationError: any verification failure
        """
        try:
            header = jwt.get_unverified_header(raw_id_token)
        except jwt.PyJWTError as e:
            raise IDTokenVerificationError(f"malformed ID token: {e}") from e

        alg = header.get("alg")
        if alg not in self.allowed_algs:
            raise IDTokenVerificationError(f"signing algorithm {alg!r} is not allowed")

        kid = header.get("kid")
        candidates = self._candidates(await self._keys(), kid, alg)
        if not candidates:
            # Possibly rotated keys
            candidates = self._candidates(await self._keys(refresh=True), kid, alg)
        if not candidates:
            raise IDTokenVerificationError(f"no signing key matches kid={kid!r}")

        claims: Optional[Dict[str, Any]] = None
        last_error: Optional[Exception] = None
        for jwk in candidates:
            try:
                claims = self._decode(raw_id_token, jwk, alg)
                break
            except jwt.InvalidSignatureError as e:
                last_error = e
            except jwt.PyJWTError as e:
                raise IDTokenVerificationError(str(e)) from e
        if claims is None:
            raise IDTokenVerificationError(f"signature verification failed: {last_error}") from last_error

        if "at_hash" in claims:
            if not access_token:
                raise IDTokenVerificationError("at_hash present but no access token to compare")
            if not hmac.compare_digest(str(claims["at_hash"]), at_hash(access_token, alg)):
                raise IDTokenVerificationError("at_hash does not match the access token")
        return claims

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} issuer={self.issuer} client_id={self.client_id}>"
