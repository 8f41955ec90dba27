"""
Helpers for retrieving and refreshing the Google token stored in token.json.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from google.oauth2.credentials import Credentials

from gateway.clients.google_auth import OAuthTokenNotFoundError
from gateway.clients.token_store import StoreIOError

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from gateway.clients.google_auth import GoogleOAuthClient
    from gateway.clients.token_store import FileTokenStore

logger = logging.getLogger(__name__)


class GoogleCredentialService:
    """Manages the ``authorized_user`` token file used for the People API."""

    _REFRESH_WINDOW = timedelta(minutes=5)

    def __init__(
        self,
        token_store: "FileTokenStore",
        oauth_client: "GoogleOAuthClient",
    ) -> None:
        self._store = token_store
        self._oauth = oauth_client
        self._lock = asyncio.Lock()

    def has_token(self) -> bool:
        record = self._store.load()
        return bool(record and record.get("refresh_token"))

    def store_authorization(
        self, *, access_token: str, refresh_token: str, expires_in: int
    ) -> None:
        """Persist a freshly granted token in ``authorized_user`` format."""
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        self._store.save(
            {
                "type": "authorized_user",
                "client_id": self._oauth.client_id,
                "client_secret": self._oauth.client_secret,
                "refresh_token": refresh_token,
                "token": access_token,
                "expiry": expires_at.isoformat(),
            }
        )
        logger.info("Stored Google credentials in %s", self._store.path)

    async def get_credentials(self) -> Credentials:
        """Load credentials, refreshing the access token when necessary."""
        async with self._lock:
            record = self._store.load()
            if not record or not record.get("refresh_token"):
                raise OAuthTokenNotFoundError(
                    f"No Google token stored in {self._store.path}; authorize first."
                )

            refresh_token = record["refresh_token"]
            access_token = record.get("token")
            expiry_raw = record.get("expiry")
            now = datetime.now(timezone.utc)
            expires_at = None
            if expiry_raw:
                expires_at = datetime.fromisoformat(expiry_raw)
                if expires_at.tzinfo is None:
                    expires_at = expires_at.replace(tzinfo=timezone.utc)

            if not access_token or expires_at is None or expires_at <= now + self._REFRESH_WINDOW:
                access_token, expires_in = await self._oauth.refresh_token(refresh_token)
                expires_at = now + timedelta(seconds=expires_in)
                record["token"] = access_token
                record["expiry"] = expires_at.isoformat()
                logger.info("Refreshed Google access token")
                try:
                    self._store.save(record)
                except StoreIOError as exc:
                    logger.warning("Refreshed Google token kept in memory only: %s", exc)

        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=self._oauth.token_uri,
            client_id=record.get("client_id") or self._oauth.client_id,
            client_secret=record.get("client_secret") or self._oauth.client_secret,
            scopes=list(self._oauth.scopes),
        )


__all__ = ["GoogleCredentialService"]
