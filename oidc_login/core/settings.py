"""
Application settings
"""
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (the directory holding config/ and .env)
BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BASE_DIR / ".env"


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    app_name: str = Field(default="OIDC Login Bridge", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(
        default=False,
        validation_alias=AliasChoices("DEBUG", "APP_DEBUG"),
        description="Enable debug mode"
    )
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "ENV", "APP_ENV"),
        description="Application environment (development, staging, production)"
    )

    # Server
    host: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices("HOST", "SERVER_HOST"),
        description="Server host"
    )
    port: int = Field(
        default=8000,
        validation_alias=AliasChoices("PORT", "SERVER_PORT"),
        description="Server port"
    )
    base_url: str = Field(
        default="http://localhost:8000",
        validation_alias=AliasChoices("BASE_URL", "PUBLIC_BASE_URL"),
        description="Externally visible base URL, used to build redirect URLs"
    )

    # OAuth / OIDC
    oauth_config_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OAUTH_CONFIG_PATH", "OIDC_PROVIDERS_FILE"),
        description="Provider YAML file (default: config/oauth_providers.yaml)"
    )
    callback_url_template: str = Field(
        default="{base_url}/_auth/{provider}/callback",
        validation_alias=AliasChoices("CALLBACK_URL_TEMPLATE", "OIDC_CALLBACK_URL"),
        description="Callback URL template; {base_url}, {provider}, {provider_lower}, {provider_upper}"
    )
    dest_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DEST_URL", "OIDC_DEST_URL"),
        description="Where to redirect after a successful login; JSON result when empty"
    )
    state_ttl_seconds: float = Field(
        default=600,
        validation_alias=AliasChoices("STATE_TTL_SECONDS", "OIDC_STATE_TTL"),
        description="Lifetime of a pending login (0 disables expiry)"
    )
    state_sweep_interval_seconds: float = Field(
        default=60,
        validation_alias=AliasChoices("STATE_SWEEP_INTERVAL_SECONDS",),
        description="How often expired pending logins are swept"
    )
    session_idle_ttl_seconds: float = Field(
        default=3600,
        validation_alias=AliasChoices("SESSION_IDLE_TTL_SECONDS",),
        description="Sessions unused for this long are dropped (0 keeps them forever); swept with pending logins"
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        validation_alias=AliasChoices("HTTP_TIMEOUT_SECONDS", "OIDC_HTTP_TIMEOUT"),
        description="Timeout for discovery, JWKS and token endpoint calls"
    )
    callback_timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("CALLBACK_TIMEOUT_SECONDS",),
        description="Deadline for exchange + verification inside one callback"
    )
    id_token_leeway_seconds: int = Field(
        default=0,
        validation_alias=AliasChoices("ID_TOKEN_LEEWAY_SECONDS",),
        description="Clock skew allowed when checking ID token exp/iat/nbf"
    )

    # Session cookie
    session_cookie_name: str = Field(
        default="oidc_login_session",
        validation_alias=AliasChoices("SESSION_COOKIE_NAME", "COOKIE_NAME"),
        description="Session cookie name"
    )
    cookie_secure: bool = Field(
        default=False,
        validation_alias=AliasChoices("COOKIE_SECURE",),
        description="Cookie Secure flag (auto-enabled in production)"
    )
    cookie_samesite: str = Field(
        default="lax",  # "lax" | "strict" | "none"
        validation_alias=AliasChoices("COOKIE_SAMESITE",),
        description="Cookie SameSite attribute (lax, strict, none)"
    )

    @computed_field
    @property
    def cookie_secure_effective(self) -> bool:
        if self.environment == "production":
            return True
        return self.cookie_secure

    # Logging
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL",),
        description="loguru level"
    )
    log_dir: Optional[str] = Field(
        default="logs",
        validation_alias=AliasChoices("LOG_DIR",),
        description="Directory for rotating log files; empty for console only"
    )

    @field_validator("base_url")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        return v.rstrip("/")

    @computed_field
    @property
    def oauth_config_file(self) -> Path:
        if self.oauth_config_path:
            return Path(self.oauth_config_path)
        return BASE_DIR / "config" / "oauth_providers.yaml"


settings = Settings()
