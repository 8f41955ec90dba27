"""
Application configuration models and helpers.

Centralizes settings for the QuickBooks session, the Google contacts
integration, and the WhatsApp bridge so routes, background tasks and scripts
share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()

_SETTINGS_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)


class QuickBooksSettings(BaseSettings):
    """Configuration for the Intuit QuickBooks OAuth session."""

    model_config = _SETTINGS_CONFIG

    oauth_state: str = Field("intuit-test", validation_alias="QBO_OAUTH_STATE")
    token_path: Optional[str] = Field(
        None,
        validation_alias="QBO_TOKEN_PATH",
        description="Optional file used to persist the token record across restarts.",
    )
    refresh_enabled: bool = Field(True, validation_alias="QBO_REFRESH_ENABLED")
    refresh_interval_seconds: int = Field(300, validation_alias="QBO_REFRESH_INTERVAL")
    refresh_window_seconds: int = Field(
        600,
        validation_alias="QBO_REFRESH_WINDOW",
        description="Access tokens expiring within this window are refreshed.",
    )
    http_timeout_seconds: float = Field(30.0, validation_alias="QBO_HTTP_TIMEOUT")


class GoogleSettings(BaseSettings):
    """Configuration required for the Google People API."""

    model_config = _SETTINGS_CONFIG

    credentials_path: str = Field(
        "credentials.json", validation_alias="GOOGLE_CREDENTIALS_PATH"
    )
    token_path: str = Field("token.json", validation_alias="GOOGLE_TOKEN_PATH")
    redirect_uri: Optional[AnyHttpUrl] = Field(
        None,
        validation_alias="GOOGLE_REDIRECT_URI",
        description="Callback registered for the Google consent flow.",
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("https://www.googleapis.com/auth/contacts",),
        validation_alias="GOOGLE_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    model_config = _SETTINGS_CONFIG

    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")


class WhatsAppSettings(BaseSettings):
    """Settings for the WhatsApp Web bridge and its session artifacts."""

    model_config = _SETTINGS_CONFIG

    bridge_url: AnyHttpUrl = Field(
        "http://localhost:3000", validation_alias="WHATSAPP_BRIDGE_URL"
    )
    bridge_timeout_seconds: float = Field(
        30.0, validation_alias="WHATSAPP_BRIDGE_TIMEOUT"
    )
    session_id: str = Field("whatsapp-node-api", validation_alias="WHATSAPP_SESSION_ID")
    qr_path: str = Field("./components/last.qr", validation_alias="WHATSAPP_QR_PATH")
    session_store: Literal["local", "mongo"] = Field(
        "local", validation_alias="WHATSAPP_SESSION_STORE"
    )
    session_dir: str = Field(".wwebjs_auth", validation_alias="WHATSAPP_SESSION_DIR")
    exit_on_auth_failure: bool = Field(
        True,
        validation_alias="WHATSAPP_EXIT_ON_AUTH_FAILURE",
        description="Stop the server when pairing fails instead of idling unpaired.",
    )
    auto_start: bool = Field(True, validation_alias="WHATSAPP_AUTO_START")


class WebhookSettings(BaseSettings):
    """Outbound relay of inbound chat messages."""

    model_config = _SETTINGS_CONFIG

    enabled: bool = Field(False, validation_alias="WEBHOOK_ENABLED")
    url: Optional[AnyHttpUrl] = Field(None, validation_alias="WEBHOOK_URL")
    timeout_seconds: float = Field(10.0, validation_alias="WEBHOOK_TIMEOUT")


class MongoSettings(BaseSettings):
    """Document store used for remote WhatsApp session persistence."""

    model_config = _SETTINGS_CONFIG

    uri: str = Field("mongodb://localhost:27017", validation_alias="MONGODB_URI")
    database: str = Field("whatsapp_gateway", validation_alias="MONGODB_DB")


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = _SETTINGS_CONFIG

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )


class AppSettings(BaseSettings):
    """Root settings object for the gateway."""

    model_config = _SETTINGS_CONFIG

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    port: int = Field(8000, validation_alias="APP_PORT")
    public_url: Optional[AnyHttpUrl] = Field(
        None,
        validation_alias="APP_PUBLIC_URL",
        description="Externally reachable base URL, e.g. an ngrok tunnel.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    quickbooks: QuickBooksSettings = Field(default_factory=QuickBooksSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    whatsapp: WhatsAppSettings = Field(default_factory=WhatsAppSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    mongo: MongoSettings = Field(default_factory=MongoSettings)

    @property
    def base_url(self) -> str:
        if self.public_url:
            return str(self.public_url).rstrip("/")
        return f"http://localhost:{self.port}"


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "GoogleSettings",
    "MongoSettings",
    "OAuthSettings",
    "QuickBooksSettings",
    "SecuritySettings",
    "WebhookSettings",
    "WhatsAppSettings",
    "get_settings",
]
