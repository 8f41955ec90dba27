"""
HTTP client for the WhatsApp Web bridge.

The bridge is a separate Node.js process running whatsapp-web.js. It pushes
client events to ``/whatsapp/events`` and exposes commands plus its own
``/chat``, ``/group``, ``/auth`` and ``/contact`` routes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from gateway.schemas.messaging import MediaAttachment

logger = logging.getLogger(__name__)

_HOP_BY_HOP_HEADERS = {
    "connection",
    "content-length",
    "host",
    "keep-alive",
    "transfer-encoding",
    "upgrade",
}


class BridgeError(Exception):
    """Raised when the bridge is unreachable or rejects a command."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def forwardable_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in _HOP_BY_HOP_HEADERS}


class WhatsAppBridgeClient:
    """Send commands to the bridge and relay proxied requests."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        )

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise BridgeError(f"WhatsApp bridge unreachable: {exc}") from exc
        if response.is_error:
            raise BridgeError(
                f"WhatsApp bridge returned HTTP {response.status_code} for {path}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    async def initialize(self, *, session_id: str, events_url: str) -> Dict[str, Any]:
        """Ask the bridge to start the client and push events to ``events_url``."""
        return await self._request_json(
            "POST",
            "/session/start",
            json={"sessionId": session_id, "eventsUrl": events_url},
        )

    async def send_message(self, chat_id: str, text: str) -> Dict[str, Any]:
        return await self._request_json(
            "POST", "/messages", json={"chatId": chat_id, "text": text}
        )

    async def download_media(self, message_id: str) -> Optional[MediaAttachment]:
        payload = await self._request_json("GET", f"/messages/{message_id}/media")
        if not payload:
            return None
        return MediaAttachment.model_validate(payload)

    async def proxy(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Forward a request verbatim and return the bridge response."""
        try:
            async with self._client() as client:
                return await client.request(
                    method,
                    path,
                    params=params,
                    headers=forwardable_headers(headers or {}),
                    content=content,
                )
        except httpx.HTTPError as exc:
            raise BridgeError(f"WhatsApp bridge unreachable: {exc}") from exc


__all__ = ["BridgeError", "WhatsAppBridgeClient", "forwardable_headers"]
