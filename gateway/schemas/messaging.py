"""Schemas for events exchanged with the WhatsApp Web bridge."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class BridgeEventType(str, Enum):
    QR = "qr"
    AUTHENTICATED = "authenticated"
    AUTH_FAILURE = "auth_failure"
    READY = "ready"
    MESSAGE = "message"
    DISCONNECTED = "disconnected"


class BridgeEvent(BaseModel):
    """Envelope posted by the bridge for every client event."""

    event: BridgeEventType
    data: Any = None


class MediaAttachment(BaseModel):
    """Downloaded media, base64 encoded as whatsapp-web.js returns it."""

    mimetype: str
    data: str
    filename: Optional[str] = None
    filesize: Optional[int] = None


class InboundMessage(BaseModel):
    """A received chat message; unknown bridge fields are kept for the webhook."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Any = None
    sender: str = Field(..., alias="from")
    body: str = ""
    has_media: bool = Field(False, alias="hasMedia")
    attachment_data: Optional[MediaAttachment] = Field(None, alias="attachmentData")

    @property
    def message_key(self) -> Optional[str]:
        """Serialized message id understood by the bridge."""
        if isinstance(self.id, dict):
            return self.id.get("_serialized") or self.id.get("id")
        return str(self.id) if self.id is not None else None

    def webhook_payload(self) -> dict[str, Any]:
        return {"msg": self.model_dump(mode="json", by_alias=True, exclude_none=True)}


class SendMessageRequest(BaseModel):
    chat_id: str = Field(..., alias="chatId", min_length=1)
    text: str = Field(..., min_length=1)

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "BridgeEvent",
    "BridgeEventType",
    "InboundMessage",
    "MediaAttachment",
    "SendMessageRequest",
]
