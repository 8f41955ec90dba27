"""Expose constructed client wrappers."""

from .google_auth import (
    ClientSecretsError,
    GoogleClientSecrets,
    GoogleOAuthClient,
    OAuthStateEncoder,
    load_client_secrets,
)
from .google_contacts import GoogleContactsClient
from .session_store import LocalSessionStore, MongoSessionStore, SessionStore
from .token_store import FileTokenStore, StoreIOError
from .whatsapp_bridge import BridgeError, WhatsAppBridgeClient

__all__ = [
    "BridgeError",
    "ClientSecretsError",
    "FileTokenStore",
    "GoogleClientSecrets",
    "GoogleContactsClient",
    "GoogleOAuthClient",
    "LocalSessionStore",
    "MongoSessionStore",
    "OAuthStateEncoder",
    "SessionStore",
    "StoreIOError",
    "WhatsAppBridgeClient",
    "load_client_secrets",
]
