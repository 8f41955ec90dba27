"""
QuickBooks Online OAuth session management.

A single ``QuickBooksSessionManager`` owns the Intuit auth client and the
current token record. Route handlers receive it through dependency injection;
the refresh loop shares the same instance.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional
from urllib.parse import parse_qs, urlparse

import httpx
from intuitlib.client import AuthClient
from intuitlib.exceptions import AuthClientError
from pydantic import ValidationError
from requests import RequestException

from gateway.clients.token_store import StoreIOError
from gateway.schemas.quickbooks import (
    ApiRequest,
    Environment,
    TokenRecord,
    normalize_environment,
)

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from gateway.clients.token_store import FileTokenStore

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://sandbox-quickbooks.api.intuit.com/"
PRODUCTION_BASE_URL = "https://quickbooks.api.intuit.com/"


class SessionState(str, Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    AUTHORIZED = "authorized"
    REFRESHING = "refreshing"


class QuickBooksSessionError(Exception):
    """Base class for session failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NotConfiguredError(QuickBooksSessionError):
    """Raised when no OAuth client has been configured."""


class UnauthenticatedError(QuickBooksSessionError):
    """Raised when an operation needs a token record and none exists."""


class TokenExchangeError(QuickBooksSessionError):
    """Raised when the authorization code exchange fails."""


class RefreshFailedError(QuickBooksSessionError):
    """Raised when Intuit rejects the refresh token."""


class ApiError(QuickBooksSessionError):
    """Raised for non-2xx responses or unreachable Intuit endpoints."""


@dataclass(frozen=True)
class _ClientConfig:
    client_id: str
    client_secret: str
    environment: Environment
    redirect_uri: str


def _describe_auth_error(exc: Exception) -> tuple[str, int | None, str | None]:
    if isinstance(exc, AuthClientError):
        status_code = getattr(exc, "status_code", None)
        content = getattr(exc, "content", None)
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        return f"Intuit returned HTTP {status_code}", status_code, content
    return f"Unable to reach Intuit: {exc}", None, None


def _first(query: dict[str, list[str]], key: str) -> str | None:
    values = query.get(key)
    return values[0] if values else None


class QuickBooksSessionManager:
    """Owns one Intuit OAuth client and the token record it produced."""

    def __init__(
        self,
        *,
        token_store: "FileTokenStore | None" = None,
        refresh_window: timedelta = timedelta(minutes=10),
        timeout_seconds: float = 30.0,
        auth_client_factory: Callable[..., Any] = AuthClient,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_store = token_store
        self._refresh_window = refresh_window
        self._timeout = timeout_seconds
        self._auth_client_factory = auth_client_factory
        self._transport = transport
        self._lock = asyncio.Lock()
        self._client: Any = None
        self._config: _ClientConfig | None = None
        self._record: TokenRecord | None = None
        self._state = SessionState.UNCONFIGURED

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def token_record(self) -> Optional[TokenRecord]:
        return self._record

    @property
    def environment(self) -> Environment:
        return self._require_config().environment

    @property
    def base_url(self) -> str:
        if self.environment == "sandbox":
            return SANDBOX_BASE_URL
        return PRODUCTION_BASE_URL

    async def configure(
        self,
        *,
        client_id: str,
        client_secret: str,
        environment: str,
        redirect_uri: str,
    ) -> "QuickBooksSessionManager":
        """Replace the current session with a fresh, unauthorized client."""
        environment = normalize_environment(environment)
        config = _ClientConfig(client_id, client_secret, environment, redirect_uri)
        async with self._lock:
            client = await self._build_client(config)
            self._client = client
            self._config = config
            self._record = None
            self._state = SessionState.CONFIGURED
        logger.info("Configured QuickBooks client for %s environment", environment)
        return self

    def build_authorization_url(self, scopes: Iterable[Any], state: str) -> str:
        """Return the Intuit consent URL for ``scopes``."""
        client = self._require_client()
        return client.get_authorization_url(list(scopes), state_token=state)

    async def exchange_code(self, callback_url: str) -> TokenRecord:
        """Complete the authorization-code exchange from the callback URL."""
        query = parse_qs(urlparse(callback_url).query)
        error = _first(query, "error")
        if error:
            raise TokenExchangeError(f"Authorization was not granted: {error}")
        code = _first(query, "code")
        if not code:
            raise TokenExchangeError("Callback URL does not carry an authorization code.")
        realm_id = _first(query, "realmId")

        async with self._lock:
            client = self._require_client()
            # AuthClient stores the realm before the request is sent.
            prior_realm_id = getattr(client, "realm_id", None)
            try:
                await asyncio.to_thread(client.get_bearer_token, code, realm_id=realm_id)
            except (AuthClientError, RequestException) as exc:
                client.realm_id = prior_realm_id
                message, status_code, body = _describe_auth_error(exc)
                logger.error("Authorization code exchange failed: %s", message)
                raise TokenExchangeError(message, status_code=status_code, body=body) from exc

            record = self._record_from_client(client, realm_id=realm_id)
            if not record.access_token or not record.refresh_token:
                client.realm_id = prior_realm_id
                raise TokenExchangeError("Intuit returned an incomplete token payload.")
            self._commit(record)
        logger.info("Authorized QuickBooks realm %s", record.realm_id)
        return record

    async def refresh(self, *, force: bool = False) -> TokenRecord:
        """
        Exchange the refresh token for a new access token.

        Unless ``force`` is set, a token that is not yet inside the refresh
        window is returned unchanged.
        """
        async with self._lock:
            client = self._require_client()
            record = self._record
            if record is None or not record.refresh_token:
                raise UnauthenticatedError("No token record; complete the OAuth callback first.")
            if not force and not record.expires_within(self._refresh_window):
                logger.debug("Access token still valid until %s", record.expires_at)
                return record

            self._state = SessionState.REFRESHING
            try:
                await asyncio.to_thread(client.refresh, refresh_token=record.refresh_token)
            except (AuthClientError, RequestException) as exc:
                self._state = SessionState.AUTHORIZED
                message, status_code, body = _describe_auth_error(exc)
                raise RefreshFailedError(message, status_code=status_code, body=body) from exc

            updated = self._record_from_client(
                client, realm_id=record.realm_id, previous=record
            )
            self._commit(updated)
        logger.info("Refreshed QuickBooks access token; expires at %s", updated.expires_at)
        return updated

    async def call(self, request: ApiRequest) -> httpx.Response:
        """Issue an authenticated request against the configured environment."""
        self._require_client()
        record = self._record
        if record is None or not record.access_token:
            raise UnauthenticatedError("No access token; complete the OAuth callback first.")

        url = f"{self.base_url}{request.path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {record.access_token}",
            "Accept": "application/json",
            **request.headers,
        }
        content = request.body if isinstance(request.body, (str, bytes)) else None
        json_body = request.body if content is None else None

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    request.method.upper(),
                    url,
                    params=request.params or None,
                    headers=headers,
                    content=content,
                    json=json_body,
                )
        except httpx.HTTPError as exc:
            raise ApiError(f"Request to {url} failed: {exc}") from exc

        if response.is_error:
            logger.warning(
                "QuickBooks API %s %s returned %s", request.method, url, response.status_code
            )
            raise ApiError(
                f"QuickBooks API returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    async def restore(self) -> Optional[TokenRecord]:
        """Rebuild the session from the persisted token record, if any."""
        if self._token_store is None:
            return None
        payload = self._token_store.load()
        if not payload:
            return None
        try:
            record = TokenRecord.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed QuickBooks token file: %s", exc)
            return None

        config = _ClientConfig(
            record.client_id, record.client_secret, record.environment, record.redirect_uri
        )
        async with self._lock:
            try:
                client = await self._build_client(config, record=record)
            except ApiError as exc:
                logger.warning("Could not restore QuickBooks session: %s", exc)
                return None
            self._client = client
            self._config = config
            self._record = record
            self._state = SessionState.AUTHORIZED if record.refresh_token else SessionState.CONFIGURED
        logger.info("Restored QuickBooks session for realm %s", record.realm_id)
        return record

    async def _build_client(
        self, config: _ClientConfig, record: TokenRecord | None = None
    ) -> Any:
        kwargs: dict[str, Any] = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "redirect_uri": config.redirect_uri,
            "environment": config.environment,
        }
        if record is not None:
            kwargs.update(
                access_token=record.access_token,
                refresh_token=record.refresh_token,
                realm_id=record.realm_id,
                id_token=record.id_token,
            )
        try:
            return await asyncio.to_thread(self._auth_client_factory, **kwargs)
        except (AuthClientError, RequestException) as exc:
            message, status_code, body = _describe_auth_error(exc)
            raise ApiError(message, status_code=status_code, body=body) from exc

    def _record_from_client(
        self,
        client: Any,
        *,
        realm_id: Optional[str],
        previous: TokenRecord | None = None,
    ) -> TokenRecord:
        """Build a record from the client's tokens; the realm is always passed in."""
        config = self._require_config()
        now = datetime.now(timezone.utc)
        expires_in = getattr(client, "expires_in", None)
        refresh_expires_in = getattr(client, "x_refresh_token_expires_in", None)
        return TokenRecord(
            client_id=config.client_id,
            client_secret=config.client_secret,
            environment=config.environment,
            redirect_uri=config.redirect_uri,
            access_token=client.access_token,
            refresh_token=client.refresh_token,
            realm_id=realm_id,
            expires_at=now + timedelta(seconds=int(expires_in)) if expires_in else None,
            refresh_token_expires_at=(
                now + timedelta(seconds=int(refresh_expires_in)) if refresh_expires_in else None
            ),
            id_token=getattr(client, "id_token", None) or (previous.id_token if previous else None),
        )

    def _commit(self, record: TokenRecord) -> None:
        self._record = record
        self._state = SessionState.AUTHORIZED
        if self._token_store is None:
            return
        try:
            self._token_store.save(record.model_dump(mode="json"))
        except StoreIOError as exc:
            logger.warning("Token record kept in memory only: %s", exc)

    def _require_client(self) -> Any:
        if self._client is None:
            raise NotConfiguredError("No QuickBooks client configured; call /authUri first.")
        return self._client

    def _require_config(self) -> _ClientConfig:
        if self._config is None:
            raise NotConfiguredError("No QuickBooks client configured; call /authUri first.")
        return self._config


__all__ = [
    "ApiError",
    "NotConfiguredError",
    "PRODUCTION_BASE_URL",
    "QuickBooksSessionError",
    "QuickBooksSessionManager",
    "RefreshFailedError",
    "SANDBOX_BASE_URL",
    "SessionState",
    "TokenExchangeError",
    "UnauthenticatedError",
]
