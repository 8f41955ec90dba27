"""Service layer exports."""

from .google_credentials import GoogleCredentialService
from .messaging_session import (
    MessagingSessionAdapter,
    PairingFailedError,
    WebhookDeliveryError,
    WebhookRelay,
    terminate_process,
)
from .quickbooks_session import (
    ApiError,
    NotConfiguredError,
    QuickBooksSessionError,
    QuickBooksSessionManager,
    RefreshFailedError,
    SessionState,
    TokenExchangeError,
    UnauthenticatedError,
)
from .token_cipher import TokenCipherService
from .token_refresh import TokenRefreshLoop

__all__ = [
    "ApiError",
    "GoogleCredentialService",
    "MessagingSessionAdapter",
    "NotConfiguredError",
    "PairingFailedError",
    "QuickBooksSessionError",
    "QuickBooksSessionManager",
    "RefreshFailedError",
    "SessionState",
    "TokenCipherService",
    "TokenExchangeError",
    "TokenRefreshLoop",
    "UnauthenticatedError",
    "WebhookDeliveryError",
    "WebhookRelay",
    "terminate_process",
]
