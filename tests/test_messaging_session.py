try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json
from pathlib import Path

import httpx
import pytest

from gateway.clients.session_store import LocalSessionStore
from gateway.clients.whatsapp_bridge import WhatsAppBridgeClient
from gateway.schemas.messaging import BridgeEvent
from gateway.services.messaging_session import (
    MessagingSessionAdapter,
    PairingFailedError,
    WebhookRelay,
)

INBOUND = {
    "id": {"_serialized": "false_5215512345678@c.us_3EB0C767D26A1B"},
    "from": "5215512345678@c.us",
    "body": "Hola",
    "hasMedia": False,
    "timestamp": 1700000000,
}


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, response: httpx.Response | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.response = response or httpx.Response(200, json={})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


def _adapter(
    tmp_path: Path,
    *,
    bridge: Recorder | None = None,
    webhook: Recorder | None = None,
    webhook_enabled: bool = True,
    on_fatal=None,
) -> MessagingSessionAdapter:
    bridge_client = WhatsAppBridgeClient(
        "http://bridge.local:3000",
        transport=httpx.MockTransport(bridge or Recorder()),
    )
    relay = WebhookRelay(
        enabled=webhook_enabled,
        url="https://hooks.example.com/whatsapp",
        transport=httpx.MockTransport(webhook or Recorder()),
    )
    return MessagingSessionAdapter(
        bridge=bridge_client,
        relay=relay,
        session_store=LocalSessionStore(str(tmp_path / "sessions")),
        session_id="whatsapp-node-api",
        qr_path=str(tmp_path / "components" / "last.qr"),
        on_fatal=on_fatal,
    )


def _event(name: str, data=None) -> BridgeEvent:
    return BridgeEvent.model_validate({"event": name, "data": data})


@pytest.mark.anyio
async def test_qr_is_written_then_removed_on_authentication(tmp_path: Path) -> None:
    adapter = _adapter(tmp_path)

    await adapter.dispatch(_event("qr", {"qr": "2@abcdef,xyz"}))
    assert adapter.qr_path.read_text(encoding="utf-8") == "2@abcdef,xyz"
    assert adapter.status()["qr_pending"]

    await adapter.dispatch(_event("authenticated"))
    await adapter.dispatch(_event("ready"))

    assert not adapter.qr_path.exists()
    assert adapter.status() == {
        "session_id": "whatsapp-node-api",
        "authenticated": True,
        "ready": True,
        "terminated": False,
        "qr_pending": False,
    }


@pytest.mark.anyio
async def test_disabled_webhook_sends_nothing(tmp_path: Path) -> None:
    webhook = Recorder()
    adapter = _adapter(tmp_path, webhook=webhook, webhook_enabled=False)

    for _ in range(3):
        await adapter.dispatch(_event("message", INBOUND))

    assert webhook.requests == []


@pytest.mark.anyio
async def test_message_is_relayed_with_bridge_fields(tmp_path: Path) -> None:
    webhook = Recorder()
    adapter = _adapter(tmp_path, webhook=webhook)

    await adapter.dispatch(_event("message", INBOUND))

    assert len(webhook.requests) == 1
    payload = json.loads(webhook.requests[0].content)
    assert payload["msg"]["from"] == "5215512345678@c.us"
    assert payload["msg"]["body"] == "Hola"
    assert payload["msg"]["timestamp"] == 1700000000
    assert "attachmentData" not in payload["msg"]


@pytest.mark.anyio
async def test_media_is_downloaded_before_relay(tmp_path: Path) -> None:
    bridge = Recorder(
        httpx.Response(200, json={"mimetype": "image/jpeg", "data": "/9j/4AAQ", "filename": None})
    )
    webhook = Recorder()
    adapter = _adapter(tmp_path, bridge=bridge, webhook=webhook)

    await adapter.dispatch(_event("message", {**INBOUND, "hasMedia": True}))

    assert bridge.requests[0].url.path == (
        "/messages/false_5215512345678@c.us_3EB0C767D26A1B/media"
    )
    payload = json.loads(webhook.requests[0].content)
    assert payload["msg"]["attachmentData"] == {"mimetype": "image/jpeg", "data": "/9j/4AAQ"}


@pytest.mark.anyio
async def test_failed_media_download_still_relays(tmp_path: Path) -> None:
    webhook = Recorder()
    adapter = _adapter(tmp_path, bridge=Recorder(httpx.Response(500)), webhook=webhook)

    await adapter.dispatch(_event("message", {**INBOUND, "hasMedia": True}))

    payload = json.loads(webhook.requests[0].content)
    assert payload["msg"]["hasMedia"] is True
    assert "attachmentData" not in payload["msg"]


@pytest.mark.anyio
async def test_webhook_failure_is_not_fatal(tmp_path: Path) -> None:
    webhook = Recorder(httpx.Response(503))
    adapter = _adapter(tmp_path, webhook=webhook)

    await adapter.dispatch(_event("message", INBOUND))
    await adapter.dispatch(_event("message", INBOUND))

    assert len(webhook.requests) == 2
    assert not adapter.terminated


@pytest.mark.anyio
async def test_malformed_message_is_dropped(tmp_path: Path) -> None:
    webhook = Recorder()
    adapter = _adapter(tmp_path, webhook=webhook)

    await adapter.dispatch(_event("message", {"body": "no sender"}))

    assert webhook.requests == []


@pytest.mark.anyio
async def test_auth_failure_is_reported_once_and_stops_processing(tmp_path: Path) -> None:
    failures: list[PairingFailedError] = []
    webhook = Recorder()
    adapter = _adapter(tmp_path, webhook=webhook, on_fatal=failures.append)
    store = LocalSessionStore(str(tmp_path / "sessions"))
    await store.save("whatsapp-node-api", b"PK\x03\x04")

    await adapter.dispatch(_event("auth_failure", {"message": "restore failed"}))
    await adapter.dispatch(_event("auth_failure", {"message": "again"}))
    await adapter.dispatch(_event("message", INBOUND))
    await adapter.dispatch(_event("ready"))

    assert len(failures) == 1
    assert "restore failed" in str(failures[0])
    assert adapter.terminated
    assert not adapter.ready
    assert webhook.requests == []
    assert not await store.exists("whatsapp-node-api")
    with pytest.raises(PairingFailedError):
        await adapter.send_message("5215512345678@c.us", "hola")


@pytest.mark.anyio
async def test_async_fatal_handler_is_awaited(tmp_path: Path) -> None:
    seen: list[str] = []

    async def on_fatal(error: PairingFailedError) -> None:
        seen.append(str(error))

    adapter = _adapter(tmp_path, on_fatal=on_fatal)
    await adapter.dispatch(_event("auth_failure", "bad session"))

    assert seen == ["WhatsApp authentication failed: bad session"]


@pytest.mark.anyio
async def test_disconnect_clears_state_and_session(tmp_path: Path) -> None:
    adapter = _adapter(tmp_path)
    store = LocalSessionStore(str(tmp_path / "sessions"))
    await store.save("whatsapp-node-api", b"PK\x03\x04")
    await adapter.dispatch(_event("authenticated"))

    await adapter.dispatch(_event("disconnected", {"reason": "NAVIGATION"}))

    assert not adapter.authenticated
    assert not await store.exists("whatsapp-node-api")


@pytest.mark.anyio
async def test_start_posts_events_url_to_bridge(tmp_path: Path) -> None:
    bridge = Recorder()
    adapter = _adapter(tmp_path, bridge=bridge)

    await adapter.start("https://gateway.example.com/whatsapp/events")

    request = bridge.requests[0]
    assert request.url.path == "/session/start"
    assert json.loads(request.content) == {
        "sessionId": "whatsapp-node-api",
        "eventsUrl": "https://gateway.example.com/whatsapp/events",
    }


@pytest.mark.anyio
async def test_start_tolerates_unreachable_bridge(tmp_path: Path) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = MessagingSessionAdapter(
        bridge=WhatsAppBridgeClient("http://bridge.local:3000", transport=httpx.MockTransport(refuse)),
        relay=WebhookRelay(enabled=False, url=None),
        session_store=LocalSessionStore(str(tmp_path)),
        session_id="whatsapp-node-api",
        qr_path=str(tmp_path / "last.qr"),
    )

    await adapter.start("https://gateway.example.com/whatsapp/events")

    assert not adapter.ready
