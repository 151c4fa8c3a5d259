"""
Token and identity models produced by a successful callback.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from oidc_login.core.session import Session

# Session attribute keys
AUTH_TOKEN_ATTR = "token"
AUTH_USER_ATTR = "user"


class OAuth2Token(BaseModel):
    """OAuth2 token set returned by the token endpoint."""

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None

    @classmethod
    def from_response(cls, payload: Dict[str, Any], now: Optional[datetime] = None) -> "OAuth2Token":
        """Build from a token endpoint JSON body; `expires_in` becomes an absolute expiry."""
        now = now or datetime.now(timezone.utc)
        expiry = None
        expires_in = payload.get("expires_in")
        if expires_in not in (None, ""):
            try:
                expiry = now + timedelta(seconds=int(expires_in))
            except OverflowError as e:
                raise ValueError(f"expires_in out of range: {expires_in!r}") from e
        return cls(
            access_token=payload["access_token"],
            token_type=payload.get("token_type") or "Bearer",
            refresh_token=payload.get("refresh_token") or None,
            expiry=expiry,
            scope=payload.get("scope"),
            id_token=payload.get("id_token"),
        )


class UserInfo(BaseModel):
    """
    Identity claims taken from a verified ID token.

    Field names follow Python naming; claim names are the aliases (`sub`, ...).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    subject: str = Field(alias="sub")
    email: str = ""
    email_verified: bool = False
    name: str = ""
    picture: str = ""
    given_name: str = ""
    family_name: str = ""
    locale: str = ""

    @field_validator("email", "name", "picture", "given_name", "family_name", "locale", mode="before")
    @classmethod
    def _null_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("email_verified", mode="before")
    @classmethod
    def _null_as_false(cls, v: Any) -> Any:
        return False if v is None else v

    @property
    def display_name(self) -> str:
        """
        Name to show in the UI. Presentation only, never use it for access control.

        Hungarian users get "given family" when both parts are known, everyone
        else the provider supplied name, falling back to the email address.
        """
        language = self.locale.replace("_", "-").split("-", 1)[0].lower()
        if language == "hu" and self.given_name and self.family_name:
            return f"{self.given_name} {self.family_name}"
        if not self.name:
            return self.email
        return self.name


class AuthResult(BaseModel):
    """Token set plus user info, the outcome of a completed callback."""

    token: OAuth2Token
    user_info: UserInfo

    def public_dict(self) -> Dict[str, Any]:
        """Token fields without the access/ID tokens, merged with the user claims."""
        data = self.token.model_dump(mode="json", exclude={"access_token", "id_token"})
        data.update(self.user_info.model_dump(mode="json", by_alias=True))
        return data


def get_user(session: Session) -> Optional[UserInfo]:
    """User bound to `session` by a completed login, if any."""
    user = session.attr(AUTH_USER_ATTR)
    return user if isinstance(user, UserInfo) else None
