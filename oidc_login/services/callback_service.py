"""
OIDC callback handling.

Flow for one redirect from the provider:
1. Resolve the state against the pending logins (consumes it)
2. Exchange the authorization code for tokens
3. Verify the ID token
4. Decode the claims into UserInfo
5. Bind token and user to the session, run the post-authentication hook

Every failure raises a `CallbackRejectedException`. A consumed state is never
restored; the user has to start over from the login page.
"""

import asyncio
import base64
import inspect
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple, Union
from urllib.parse import quote_plus

import httpx
from loguru import logger
from pydantic import ValidationError

from oidc_login.common.exceptions import (
    AuthorizationDeniedException,
    ClaimsDecodeFailedException,
    ExchangeFailedException,
    PostAuthHookFailedException,
    StateMismatchException,
    VerificationFailedException,
)
from oidc_login.core.oauth.correlation import CorrelationStore
from oidc_login.core.oauth.models import AUTH_TOKEN_ATTR, AUTH_USER_ATTR, AuthResult, OAuth2Token, UserInfo
from oidc_login.core.oauth.registry import Provider, ProviderRegistry
from oidc_login.core.oauth.verifier import IDTokenVerificationError
from oidc_login.core.session import Session

LOG_PREFIX = "[CallbackDispatcher]"

PostAuthHook = Callable[[Session], Union[None, Awaitable[None]]]


class CallbackDispatcher:
    """
    Completes logins started by `LoginService`.

    Args:
        registry: registered providers
        store: pending logins
        http_client: shared client for the token endpoint; a short-lived one per call when None
        timeout: HTTP timeout for the token endpoint when no client is given
        deadline: overall limit for exchange + verification of one callback
        on_authenticated: called with the session after token and user are bound
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: CorrelationStore,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        deadline: float = 30.0,
        on_authenticated: Optional[PostAuthHook] = None,
    ):
        self.registry = registry
        self.store = store
        self.timeout = timeout
        self.deadline = deadline
        self.on_authenticated = on_authenticated
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def handle(
        self,
        provider_name: str,
        state: Optional[str],
        code: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> AuthResult:
        """
        Run the callback state machine for `provider_name`.

        Returns:
            AuthResult bound to the session that started the login

        Raises:
            StateMismatchException: missing/unknown/used/expired state, or a state begun for another provider
            AuthorizationDeniedException: the provider answered with an `error`
            ExchangeFailedException: no code, token endpoint failure or deadline exceeded
            VerificationFailedException: ID token missing or invalid
            ClaimsDecodeFailedException: claims do not fit UserInfo
            PostAuthHookFailedException: `on_authenticated` raised; token and user are unbound again
        """
        if not state:
            logger.warning(f"{LOG_PREFIX} Callback for {provider_name} without state")
            raise StateMismatchException()

        pending = self.store.resolve(state)
        if pending is None:
            logger.warning(f"{LOG_PREFIX} Invalid or expired state for {provider_name}: {state[:8]}...")
            raise StateMismatchException()
        if pending.provider is not None and pending.provider != provider_name:
            logger.warning(
                f"{LOG_PREFIX} Provider mismatch: state issued for {pending.provider}, callback on {provider_name}"
            )
            raise StateMismatchException()

        session = pending.session
        provider = self.registry.get(provider_name)

        if error:
            logger.warning(f"{LOG_PREFIX} {provider_name} returned error: {error} - {error_description}")
            raise AuthorizationDeniedException()
        if not code:
            logger.warning(f"{LOG_PREFIX} Callback for {provider_name} without code")
            raise ExchangeFailedException()

        try:
            token, claims = await asyncio.wait_for(self._authenticate(provider, code), timeout=self.deadline)
        except asyncio.TimeoutError as e:
            logger.error(f"{LOG_PREFIX} {provider_name} did not answer within {self.deadline}s")
            raise ExchangeFailedException() from e

        try:
            user_info = UserInfo.model_validate(claims)
        except ValidationError as e:
            logger.error(f"{LOG_PREFIX} Cannot decode {provider_name} claims: {e}")
            raise ClaimsDecodeFailedException() from e

        session.set_attr(AUTH_TOKEN_ATTR, token)
        session.set_attr(AUTH_USER_ATTR, user_info)
        logger.info(
            f"{LOG_PREFIX} Session {session.id[:8]}... authenticated via {provider_name} as sub={user_info.subject}"
        )

        if self.on_authenticated is not None:
            try:
                result = self.on_authenticated(session)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.opt(exception=True).error(
                    f"{LOG_PREFIX} Post-authentication hook failed for session {session.id[:8]}...: {e!r}"
                )
                session.set_attr(AUTH_TOKEN_ATTR, None)
                session.set_attr(AUTH_USER_ATTR, None)
                raise PostAuthHookFailedException() from e

        return AuthResult(token=token, user_info=user_info)

    async def _authenticate(self, provider: Provider, code: str) -> Tuple[OAuth2Token, Dict[str, Any]]:
        token = await self._exchange_code(provider, code)

        if not token.id_token:
            logger.error(f"{LOG_PREFIX} No id_token field in {provider.name} token response")
            raise VerificationFailedException()
        try:
            claims = await provider.verifier.verify(token.id_token, access_token=token.access_token)
        except IDTokenVerificationError as e:
            logger.error(f"{LOG_PREFIX} Failed to verify {provider.name} ID token: {e}")
            raise VerificationFailedException() from e
        return token, claims

    async def _exchange_code(self, provider: Provider, code: str) -> OAuth2Token:
        """Exchange `code` at the provider's token endpoint."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": provider.redirect_url or "",
        }
        headers: Dict[str, str] = {"Accept": "application/json"}

        if provider.token_auth_method == "client_secret_post":
            data["client_id"] = provider.client_id
            data["client_secret"] = provider.client_secret
        else:
            # client_secret_basic: both parts form-encoded first (RFC 6749 2.3.1)
            credentials = base64.b64encode(
                f"{quote_plus(provider.client_id)}:{quote_plus(provider.client_secret)}".encode()
            ).decode()
            headers["Authorization"] = f"Basic {credentials}"

        token_url = provider.metadata.token_endpoint
        try:
            async with self._client() as client:
                response = await client.post(token_url, data=data, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{LOG_PREFIX} Token exchange with {provider.name} failed: {e}")
            raise ExchangeFailedException() from e

        if response.status_code != 200:
            logger.error(f"{LOG_PREFIX} Token exchange failed: {response.status_code} - {response.text}")
            raise ExchangeFailedException()

        try:
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError("token response is not an object")
            if payload.get("error"):
                raise ValueError(f"{payload.get('error')}: {payload.get('error_description', '')}")
            token = OAuth2Token.from_response(payload)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            logger.error(f"{LOG_PREFIX} Invalid token response from {provider.name}: {e!r}")
            raise ExchangeFailedException() from e

        logger.info(f"{LOG_PREFIX} Token exchange successful for {provider.name}")
        return token
