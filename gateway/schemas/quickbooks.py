"""Schemas for the QuickBooks OAuth session."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Environment = Literal["sandbox", "production"]

_ENVIRONMENT_ALIASES = {
    "sandbox": "sandbox",
    "sand": "sandbox",
    "production": "production",
    "prod": "production",
}


def normalize_environment(value: str) -> Environment:
    """Map the names Intuit accepts (any case, ``sand``/``prod``) to one spelling."""
    normalized = _ENVIRONMENT_ALIASES.get(str(value).strip().lower())
    if normalized is None:
        raise ValueError(f"environment must be 'sandbox' or 'production', got {value!r}")
    return normalized  # type: ignore[return-value]


class ClientConfiguration(BaseModel):
    """Parameters supplied to ``/authUri`` to start a new session."""

    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(..., alias="clientId", min_length=1)
    client_secret: str = Field(..., alias="clientSecret", min_length=1)
    environment: Environment = "sandbox"
    redirect_uri: str = Field(..., alias="redirectUri", min_length=1)

    @field_validator("environment", mode="before")
    @classmethod
    def check_environment(cls, value: str) -> Environment:
        return normalize_environment(value)


class TokenRecord(BaseModel):
    """Credentials needed to call the accounting API on behalf of a realm."""

    client_id: str
    client_secret: str
    environment: Environment
    redirect_uri: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    realm_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None
    id_token: Optional[str] = None
    token_type: str = "bearer"

    @field_validator("environment", mode="before")
    @classmethod
    def check_environment(cls, value: str) -> Environment:
        return normalize_environment(value)

    def expires_within(self, window: timedelta, now: datetime | None = None) -> bool:
        """Return True when the access token is missing or expires inside ``window``."""
        if not self.access_token or self.expires_at is None:
            return True
        current = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= current + window

    def public_dump(self) -> Dict[str, Any]:
        """Serializable view without the client secret."""
        return self.model_dump(mode="json", exclude={"client_secret"})


class ApiRequest(BaseModel):
    """An authenticated call relative to the environment's base URL."""

    path: str = Field(..., description="Path such as 'v3/company/123/companyinfo/123'.")
    method: str = "GET"
    params: Dict[str, str] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None


__all__ = [
    "ApiRequest",
    "ClientConfiguration",
    "Environment",
    "TokenRecord",
    "normalize_environment",
]
