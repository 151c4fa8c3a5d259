"""
Shared fixtures: an in-process fake OIDC provider served through httpx.MockTransport.
"""

from __future__ import annotations

import json
import secrets
import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt.algorithms import ECAlgorithm, RSAAlgorithm

from oidc_login.core.oauth.discovery import OIDCDiscovery
from oidc_login.core.oauth.registry import ProviderRegistry

ISSUER = "https://issuer.example"
CLIENT_ID = "cid"
CLIENT_SECRET = "csec"
KEY_ID = "test-key-1"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


class SigningKey:
    """An RSA (default) or P-256 EC key pair with its public JWK."""

    def __init__(self, kid: str, kty: str = "RSA"):
        if kty == "EC":
            key = ec.generate_private_key(ec.SECP256R1())
            public_jwk = ECAlgorithm.to_jwk(key.public_key())
        else:
            key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
            public_jwk = RSAAlgorithm.to_jwk(key.public_key())
        self.kid = kid
        self.kty = kty
        self.private_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()
        self.public_jwk = json.loads(public_jwk)
        self.public_jwk.update({"kid": kid, "use": "sig"})

    def sign(self, claims: Dict[str, Any], algorithm: str = "RS256", kid: Optional[str] = None) -> str:
        return jwt.encode(claims, self.private_pem, algorithm=algorithm, headers={"kid": kid or self.kid})


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    return SigningKey(KEY_ID)


@pytest.fixture(scope="session")
def other_signing_key() -> SigningKey:
    return SigningKey("other-key")


# ---------------------------------------------------------------------------
# Fake identity provider
# ---------------------------------------------------------------------------


class FakeIdP:
    """
    Minimal OIDC provider: discovery document, JWKS and token endpoint.

    `issue_code()` returns an authorization code whose token response carries an
    ID token signed with the provider key (or whatever the caller supplies).
    """

    def __init__(self, signing_key: SigningKey, issuer: str = ISSUER, client_id: str = CLIENT_ID):
        self.issuer = issuer
        self.client_id = client_id
        self.key = signing_key
        self.jwks: List[Dict[str, Any]] = [signing_key.public_jwk]
        self.codes: Dict[str, Dict[str, Any]] = {}
        self.token_requests: List[httpx.Request] = []
        self.discovery_requests = 0
        self.jwks_requests = 0
        self.discovery_status = 200
        self.token_status = 200
        self.discovery_issuer: Optional[str] = None

    def claims(self, **overrides: Any) -> Dict[str, Any]:
        now = int(time.time())
        claims = {
            "iss": self.issuer,
            "aud": self.client_id,
            "sub": "user-1",
            "email": "alice@example.com",
            "email_verified": True,
            "name": "Alice Example",
            "iat": now,
            "exp": now + 300,
        }
        claims.update(overrides)
        return {k: v for k, v in claims.items() if v is not None}

    def issue_code(
        self,
        claims: Optional[Dict[str, Any]] = None,
        *,
        id_token: Optional[str] = None,
        include_id_token: bool = True,
        algorithm: str = "RS256",
    ) -> str:
        if id_token is None and include_id_token:
            id_token = self.key.sign(claims if claims is not None else self.claims(), algorithm=algorithm)
        body: Dict[str, Any] = {
            "access_token": "at-" + secrets.token_hex(8),
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "rt-" + secrets.token_hex(8),
        }
        if id_token is not None:
            body["id_token"] = id_token
        code = "code-" + secrets.token_hex(8)
        self.codes[code] = body
        return code

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == f"{self.issuer}/.well-known/openid-configuration":
            self.discovery_requests += 1
            if self.discovery_status != 200:
                return httpx.Response(self.discovery_status, text="nope")
            return httpx.Response(
                200,
                json={
                    "issuer": self.discovery_issuer or self.issuer,
                    "authorization_endpoint": f"{self.issuer}/authorize",
                    "token_endpoint": f"{self.issuer}/token",
                    "jwks_uri": f"{self.issuer}/jwks",
                    "userinfo_endpoint": f"{self.issuer}/userinfo",
                },
            )
        if url == f"{self.issuer}/jwks":
            self.jwks_requests += 1
            return httpx.Response(200, json={"keys": list(self.jwks)})
        if url == f"{self.issuer}/token" and request.method == "POST":
            self.token_requests.append(request)
            form = parse_qs(request.content.decode())
            code = form.get("code", [""])[0]
            body = self.codes.pop(code, None)
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "server_error"})
            if body is None:
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json=body)
        return httpx.Response(404, text="not found")


@pytest.fixture
def idp(signing_key: SigningKey) -> FakeIdP:
    return FakeIdP(signing_key)


@pytest.fixture
def http_client(idp: FakeIdP) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(idp.handler))


@pytest.fixture
def registry(http_client: httpx.AsyncClient) -> ProviderRegistry:
    return ProviderRegistry(OIDCDiscovery(http_client))
