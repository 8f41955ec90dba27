"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_contacts_client,
    get_google_credential_service,
    get_google_oauth_client,
    get_google_token_store,
    get_messaging_session,
    get_oauth_state_encoder,
    get_qbo_token_store,
    get_quickbooks_session,
    get_session_store,
    get_token_cipher_service,
    get_token_refresh_loop,
    get_webhook_relay,
    get_whatsapp_bridge_client,
)
from .config import get_app_settings

__all__ = [
    "get_app_settings",
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
