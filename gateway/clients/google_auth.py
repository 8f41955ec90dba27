"""
Google OAuth utilities.

These helpers read the installed/web client secrets, manage the consent flow
for the People API, and refresh access tokens.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
from dataclasses import dataclass, field
from hashlib import sha256
from pathlib import Path
from typing import Any, Dict, Iterable, Tuple
from urllib.parse import urlencode

import httpx

from fastapi import HTTPException, status


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Malformed OAuth state.",
            ) from exc
        signature, serialized = decoded[:32], decoded[32:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid OAuth state signature.",
            )
        return json.loads(serialized)


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint returns an error."""


class OAuthTokenNotFoundError(Exception):
    """Raised when no persisted Google token is available."""


class ClientSecretsError(Exception):
    """Raised when credentials.json is missing or malformed."""


@dataclass(frozen=True)
class GoogleClientSecrets:
    client_id: str
    client_secret: str
    token_uri: str = "https://oauth2.googleapis.com/token"
    redirect_uris: Tuple[str, ...] = field(default_factory=tuple)


def load_client_secrets(path: str) -> GoogleClientSecrets:
    """Read the ``installed`` or ``web`` key of a Google client secrets file."""
    secrets_path = Path(path)
    try:
        keys = json.loads(secrets_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ClientSecretsError(f"Client secrets file {path} not found.") from exc
    except (OSError, ValueError) as exc:
        raise ClientSecretsError(f"Client secrets file {path} is unreadable: {exc}") from exc

    key = keys.get("installed") or keys.get("web")
    if not key or not key.get("client_id") or not key.get("client_secret"):
        raise ClientSecretsError(
            f"Client secrets file {path} has no 'installed' or 'web' client."
        )
    return GoogleClientSecrets(
        client_id=key["client_id"],
        client_secret=key["client_secret"],
        token_uri=key.get("token_uri") or GoogleClientSecrets.token_uri,
        redirect_uris=tuple(key.get("redirect_uris") or ()),
    )


class GoogleOAuthClient:
    """Build Google authorization URLs and exchange authorization codes."""

    AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"

    def __init__(
        self,
        secrets: GoogleClientSecrets,
        *,
        redirect_uri: str,
        scopes: Iterable[str],
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._secrets = secrets
        self._redirect_uri = redirect_uri
        self._scopes = tuple(scopes)
        self._transport = transport

    @property
    def client_id(self) -> str:
        return self._secrets.client_id

    @property
    def client_secret(self) -> str:
        return self._secrets.client_secret

    @property
    def scopes(self) -> Tuple[str, ...]:
        return self._scopes

    @property
    def token_uri(self) -> str:
        return self._secrets.token_uri

    def build_authorization_url(self, state: str, access_type: str = "offline") -> str:
        """Construct the Google OAuth consent URL."""
        params = {
            "client_id": self._secrets.client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._scopes),
            "access_type": access_type,
            "include_granted_scopes": "true",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> Tuple[str, str, int]:
        """
        Exchange an authorization code for tokens.

        Returns a tuple of (access_token, refresh_token, expires_in_seconds).
        """
        token_payload = await self._post_token(
            {
                "code": code,
                "client_id": self._secrets.client_id,
                "client_secret": self._secrets.client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        access_token = token_payload.get("access_token")
        refresh_token = token_payload.get("refresh_token")
        expires_in = token_payload.get("expires_in")

        if not access_token or not refresh_token or not expires_in:
            raise OAuthTokenExchangeError("Incomplete token payload returned from Google.")

        return access_token, refresh_token, int(expires_in)

    async def refresh_token(self, refresh_token: str) -> Tuple[str, int]:
        """Refresh the access token using a stored refresh token."""
        token_payload = await self._post_token(
            {
                "client_id": self._secrets.client_id,
                "client_secret": self._secrets.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")

        if not access_token or not expires_in:
            raise OAuthTokenExchangeError("Incomplete refresh payload returned from Google.")

        return access_token, int(expires_in)

    async def _post_token(self, payload: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(self._secrets.token_uri, data=payload)
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != status.HTTP_200_OK:
            raise OAuthTokenExchangeError(response.text)
        return response.json()


__all__ = [
    "ClientSecretsError",
    "GoogleClientSecrets",
    "GoogleOAuthClient",
    "OAuthStateEncoder",
    "OAuthTokenExchangeError",
    "OAuthTokenNotFoundError",
    "load_client_secrets",
]
