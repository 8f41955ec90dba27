"""
WhatsApp session lifecycle and webhook relay.

The bridge reports client events (QR issued, authenticated, auth failure,
ready, message, disconnected); ``MessagingSessionAdapter.dispatch`` applies
them. Pairing failure is fatal: it is reported once to the supervisor
callback and every later event is ignored.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

import httpx
from pydantic import ValidationError

from gateway.clients.whatsapp_bridge import BridgeError
from gateway.schemas.messaging import BridgeEvent, BridgeEventType, InboundMessage

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from gateway.clients.session_store import SessionStore
    from gateway.clients.whatsapp_bridge import WhatsAppBridgeClient

logger = logging.getLogger(__name__)


class PairingFailedError(Exception):
    """The WhatsApp session could not authenticate; manual re-pairing is needed."""


class WebhookDeliveryError(Exception):
    """A relayed message could not be delivered to the webhook."""


FatalHandler = Callable[[PairingFailedError], Union[None, Awaitable[None]]]


def terminate_process(error: PairingFailedError) -> None:
    """Default supervisor: ask the server to shut down gracefully."""
    logger.critical("AUTH Failed! %s", error)
    os.kill(os.getpid(), signal.SIGTERM)


class WebhookRelay:
    """Forward inbound messages to the configured endpoint."""

    def __init__(
        self,
        *,
        enabled: bool,
        url: str | None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._enabled = enabled
        self._url = url
        self._timeout = timeout_seconds
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self._url)

    async def deliver(self, message: InboundMessage) -> None:
        if not self.enabled:
            return
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(self._url, json=message.webhook_payload())
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise WebhookDeliveryError(f"Webhook {self._url} failed: {exc}") from exc


class MessagingSessionAdapter:
    """Apply bridge events to the local session state."""

    def __init__(
        self,
        *,
        bridge: "WhatsAppBridgeClient",
        relay: WebhookRelay,
        session_store: "SessionStore",
        session_id: str,
        qr_path: str,
        on_fatal: Optional[FatalHandler] = None,
    ) -> None:
        self._bridge = bridge
        self._relay = relay
        self._session_store = session_store
        self._session_id = session_id
        self._qr_path = Path(qr_path)
        self._on_fatal = on_fatal
        self._handlers: dict[BridgeEventType, Callable[[Any], Awaitable[None]]] = {
            BridgeEventType.QR: self._handle_qr,
            BridgeEventType.AUTHENTICATED: self._handle_authenticated,
            BridgeEventType.AUTH_FAILURE: self._handle_auth_failure,
            BridgeEventType.READY: self._handle_ready,
            BridgeEventType.MESSAGE: self._handle_message,
            BridgeEventType.DISCONNECTED: self._handle_disconnected,
        }
        self.authenticated = False
        self.ready = False
        self.fatal_error: Optional[PairingFailedError] = None

    @property
    def terminated(self) -> bool:
        return self.fatal_error is not None

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def qr_path(self) -> Path:
        return self._qr_path

    def status(self) -> dict[str, Any]:
        return {
            "session_id": self._session_id,
            "authenticated": self.authenticated,
            "ready": self.ready,
            "terminated": self.terminated,
            "qr_pending": self._qr_path.exists(),
        }

    async def start(self, events_url: str) -> None:
        """Ask the bridge to initialize the client; failures are logged."""
        try:
            await self._bridge.initialize(session_id=self._session_id, events_url=events_url)
        except BridgeError as exc:
            logger.warning("WhatsApp bridge not initialized: %s", exc)
            return
        logger.info("WhatsApp bridge initializing session %s", self._session_id)

    async def send_message(self, chat_id: str, text: str) -> dict[str, Any]:
        if self.terminated:
            raise PairingFailedError("WhatsApp session failed to authenticate.")
        return await self._bridge.send_message(chat_id, text)

    async def dispatch(self, event: BridgeEvent) -> None:
        if self.terminated:
            logger.warning("Ignoring %s event after pairing failure", event.event.value)
            return
        await self._handlers[event.event](event.data)

    async def _handle_qr(self, data: Any) -> None:
        qr = data.get("qr") if isinstance(data, dict) else data
        if not qr:
            logger.warning("QR event without payload")
            return

        def _write() -> None:
            self._qr_path.parent.mkdir(parents=True, exist_ok=True)
            self._qr_path.write_text(str(qr), encoding="utf-8")

        await asyncio.to_thread(_write)
        logger.info("qr")

    async def _handle_authenticated(self, data: Any) -> None:
        self.authenticated = True
        self.ready = True
        self._qr_path.unlink(missing_ok=True)
        logger.info("AUTH!")

    async def _handle_auth_failure(self, data: Any) -> None:
        reason = data.get("message") if isinstance(data, dict) else data
        error = PairingFailedError(f"WhatsApp authentication failed: {reason or 'unknown'}")
        self.fatal_error = error
        self.authenticated = False
        self.ready = False
        await self._discard_session()
        if self._on_fatal is not None:
            result = self._on_fatal(error)
            if inspect.isawaitable(result):
                await result

    async def _handle_ready(self, data: Any) -> None:
        self.ready = True
        logger.info("Client is ready!")

    async def _handle_message(self, data: Any) -> None:
        if not self._relay.enabled:
            return
        try:
            message = InboundMessage.model_validate(data)
        except ValidationError as exc:
            logger.warning("Dropping malformed message event: %s", exc)
            return

        if message.has_media and message.attachment_data is None and message.message_key:
            try:
                message.attachment_data = await self._bridge.download_media(message.message_key)
            except BridgeError as exc:
                logger.warning("Could not download media for %s: %s", message.message_key, exc)

        try:
            await self._relay.deliver(message)
        except WebhookDeliveryError as exc:
            logger.warning("%s", exc)

    async def _handle_disconnected(self, data: Any) -> None:
        self.authenticated = False
        self.ready = False
        logger.info("disconnected")
        await self._discard_session()

    async def _discard_session(self) -> None:
        try:
            await self._session_store.delete(self._session_id)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Could not delete stored session %s: %s", self._session_id, exc)


__all__ = [
    "FatalHandler",
    "MessagingSessionAdapter",
    "PairingFailedError",
    "WebhookDeliveryError",
    "WebhookRelay",
    "terminate_process",
]
