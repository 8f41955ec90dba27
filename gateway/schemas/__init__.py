"""Public schema exports."""

from .auth import OAuthCallbackPayload
from .contacts import Contact
from .messaging import (
    BridgeEvent,
    BridgeEventType,
    InboundMessage,
    MediaAttachment,
    SendMessageRequest,
)
from .quickbooks import ApiRequest, ClientConfiguration, TokenRecord

__all__ = [
    "ApiRequest",
    "BridgeEvent",
    "BridgeEventType",
    "ClientConfiguration",
    "Contact",
    "InboundMessage",
    "MediaAttachment",
    "OAuthCallbackPayload",
    "SendMessageRequest",
    "TokenRecord",
]
