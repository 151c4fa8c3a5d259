"""
Unified exception module (single entry point).

- **HTTP exceptions**: inherit `AppException(HTTPException)`; `status_code` (HTTP) is kept
  separate from `code` (business/error code), `data` carries extra details.
- **Callback rejections**: `CallbackRejectedException` and subclasses are the terminal
  `Rejected(code, reason)` states of an OIDC callback; they render as plain text.
- **Registration errors**: raised while building the provider registry at start-up.
  They are not HTTP errors; the application lifespan decides whether they are fatal.
- **Handlers**: `register_exception_handlers` wires everything into a FastAPI app.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from loguru import logger

from oidc_login.common.response import error_response


class AppException(HTTPException):
    """Base application exception."""

    code: int
    data: Any

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        message: str = "Internal Server Error",
        *,
        code: int | None = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = status_code if code is None else code
        self.data = data


class NotFoundException(AppException):
    """Resource not found (404)"""

    def __init__(self, message: str = "Resource not found", *, code: int | None = None, data: Any = None):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, message=message, code=code, data=data)


class UnauthorizedException(AppException):
    """Unauthorized (401)"""

    def __init__(self, message: str = "Unauthorized", *, code: int | None = None, data: Any = None):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, message=message, code=code, data=data)


# ==================== OIDC callback rejections ====================


class CallbackRejectedException(AppException):
    """
    A callback that ended in the `Rejected` state.

    `detail` is the reason shown to the browser; the underlying cause is chained
    (`raise ... from exc`) and logged, never rendered.
    """

    reason: str = "login rejected"
    status_code_default: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, reason: str | None = None, *, data: Any = None):
        super().__init__(
            status_code=self.status_code_default,
            message=reason or self.reason,
            data=data,
        )


class StateMismatchException(CallbackRejectedException):
    """Missing, unknown, consumed or expired state (400)."""

    reason = "state did not match"
    status_code_default = status.HTTP_400_BAD_REQUEST


class AuthorizationDeniedException(CallbackRejectedException):
    """The provider redirected back with an `error` instead of a code (400)."""

    reason = "authorization denied"
    status_code_default = status.HTTP_400_BAD_REQUEST


class ExchangeFailedException(CallbackRejectedException):
    reason = "token exchange failed"


class VerificationFailedException(CallbackRejectedException):
    reason = "ID token verification failed"


class ClaimsDecodeFailedException(CallbackRejectedException):
    reason = "claims decode failed"


class PostAuthHookFailedException(CallbackRejectedException):
    """The post-authentication hook raised; the session binding was rolled back."""

    reason = "post-authentication hook failed"


# ==================== Provider registration errors ====================


class ProviderRegistrationError(Exception):
    """Base class for provider registry errors."""

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name


class AlreadyRegisteredError(ProviderRegistrationError):
    def __init__(self, name: str):
        super().__init__(name, f"Provider {name!r} already exists")


class UnknownIssuerError(ProviderRegistrationError):
    def __init__(self, name: str):
        super().__init__(name, f"No issuer specified, and {name!r} is not a well-known provider")


class DiscoveryFailedError(ProviderRegistrationError):
    """Discovery could not resolve the issuer; the cause is chained."""

    def __init__(self, name: str, issuer: str, cause: Exception):
        super().__init__(name, f"{name}: discovery of {issuer!r} failed: {cause}")
        self.issuer = issuer


class ProviderNotFoundError(LookupError):
    def __init__(self, name: str):
        super().__init__(f"Provider {name!r} is not registered")
        self.name = name


# ==================== Error responses & handlers ====================


def create_error_response(*, status_code: int, code: int, message: str, data: Any = None) -> Response:
    """JSON error envelope (see `oidc_login.common.response`)."""
    return JSONResponse(
        status_code=status_code,
        content=error_response(message=message, code=code, data=data),
    )


async def callback_rejected_handler(request: Request, exc: CallbackRejectedException) -> Response:
    """Rejected callbacks answer with the bare reason as text/plain."""
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> Response:
    """`AppException` keeps its own code and data; other HTTPExceptions use the status."""
    return create_error_response(
        status_code=exc.status_code,
        code=getattr(exc, "code", exc.status_code),
        message=str(exc.detail),
        data=getattr(exc, "data", None),
    )


async def general_exception_handler(request: Request, exc: Exception) -> Response:
    """Uncaught exceptions (500); details only in debug mode."""
    logger.exception("Unhandled exception: {}", exc)

    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        from oidc_login.core.settings import settings

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message=str(exc) if settings.debug else "Internal Server Error",
        data={"error_type": type(exc).__name__} if settings.debug else None,
    )


def register_exception_handlers(app: Any) -> None:
    """Register all exception handlers on a FastAPI app."""
    app.add_exception_handler(CallbackRejectedException, callback_rejected_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
