"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from datetime import timedelta
from functools import lru_cache

from motor.motor_asyncio import AsyncIOMotorClient

from gateway.clients import (
    FileTokenStore,
    GoogleContactsClient,
    GoogleOAuthClient,
    LocalSessionStore,
    MongoSessionStore,
    OAuthStateEncoder,
    SessionStore,
    WhatsAppBridgeClient,
    load_client_secrets,
)
from gateway.core.config import get_settings
from gateway.services import (
    GoogleCredentialService,
    MessagingSessionAdapter,
    QuickBooksSessionManager,
    TokenCipherService,
    TokenRefreshLoop,
    WebhookRelay,
    terminate_process,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_cipher_service() -> TokenCipherService | None:
    """Provide symmetric encryption for the QuickBooks token file when configured."""
    secret = _settings().security.token_encryption_secret
    if not secret:
        return None
    return TokenCipherService(secret=secret)


@lru_cache()
def get_qbo_token_store() -> FileTokenStore | None:
    """Provide the QuickBooks token file, if persistence is enabled."""
    settings = _settings()
    if not settings.quickbooks.token_path:
        return None
    return FileTokenStore(settings.quickbooks.token_path, cipher=get_token_cipher_service())


@lru_cache()
def get_quickbooks_session() -> QuickBooksSessionManager:
    """Create the process-wide QuickBooks session."""
    settings = _settings().quickbooks
    return QuickBooksSessionManager(
        token_store=get_qbo_token_store(),
        refresh_window=timedelta(seconds=settings.refresh_window_seconds),
        timeout_seconds=settings.http_timeout_seconds,
    )


@lru_cache()
def get_token_refresh_loop() -> TokenRefreshLoop:
    """Provide the periodic refresh task bound to the shared session."""
    settings = _settings().quickbooks
    return TokenRefreshLoop(
        get_quickbooks_session(), interval_seconds=settings.refresh_interval_seconds
    )


@lru_cache()
def get_google_oauth_client() -> GoogleOAuthClient:
    """Create a Google OAuth client from credentials.json."""
    settings = _settings()
    secrets = load_client_secrets(settings.google.credentials_path)
    redirect_uri = (
        str(settings.google.redirect_uri)
        if settings.google.redirect_uri
        else f"{settings.base_url}/google/callback"
    )
    return GoogleOAuthClient(
        secrets, redirect_uri=redirect_uri, scopes=settings.google.scopes
    )


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder derived from the Google client secret."""
    return OAuthStateEncoder(secret_key=get_google_oauth_client().client_secret)


@lru_cache()
def get_google_token_store() -> FileTokenStore:
    return FileTokenStore(_settings().google.token_path)


@lru_cache()
def get_google_credential_service() -> GoogleCredentialService:
    """Provide helper for loading and refreshing token.json."""
    return GoogleCredentialService(
        token_store=get_google_token_store(),
        oauth_client=get_google_oauth_client(),
    )


@lru_cache()
def get_contacts_client() -> GoogleContactsClient:
    return GoogleContactsClient()


@lru_cache()
def get_whatsapp_bridge_client() -> WhatsAppBridgeClient:
    settings = _settings().whatsapp
    return WhatsAppBridgeClient(
        str(settings.bridge_url), timeout_seconds=settings.bridge_timeout_seconds
    )


@lru_cache()
def get_session_store() -> SessionStore:
    """Provide local or MongoDB-backed session persistence."""
    settings = _settings()
    if settings.whatsapp.session_store == "mongo":
        client = AsyncIOMotorClient(settings.mongo.uri)
        return MongoSessionStore(client[settings.mongo.database])
    return LocalSessionStore(settings.whatsapp.session_dir)


@lru_cache()
def get_webhook_relay() -> WebhookRelay:
    settings = _settings().webhook
    return WebhookRelay(
        enabled=settings.enabled,
        url=str(settings.url) if settings.url else None,
        timeout_seconds=settings.timeout_seconds,
    )


@lru_cache()
def get_messaging_session() -> MessagingSessionAdapter:
    """Provide the single WhatsApp session adapter."""
    settings = _settings().whatsapp
    return MessagingSessionAdapter(
        bridge=get_whatsapp_bridge_client(),
        relay=get_webhook_relay(),
        session_store=get_session_store(),
        session_id=settings.session_id,
        qr_path=settings.qr_path,
        on_fatal=terminate_process if settings.exit_on_auth_failure else None,
    )


__all__ = [
    "get_contacts_client",
    "get_google_credential_service",
    "get_google_oauth_client",
    "get_google_token_store",
    "get_messaging_session",
    "get_oauth_state_encoder",
    "get_qbo_token_store",
    "get_quickbooks_session",
    "get_session_store",
    "get_token_cipher_service",
    "get_token_refresh_loop",
    "get_webhook_relay",
    "get_whatsapp_bridge_client",
]
