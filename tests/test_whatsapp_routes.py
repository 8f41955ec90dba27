try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import json
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

from gateway import dependencies
from gateway.clients.session_store import LocalSessionStore
from gateway.clients.whatsapp_bridge import WhatsAppBridgeClient
from gateway.main import app
from gateway.services.messaging_session import MessagingSessionAdapter, WebhookRelay


class FakeBridge:
    """Bridge process stand-in answering on a MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.down = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(request)
        if request.url.path == "/messages":
            return httpx.Response(200, json={"id": "true_521@c.us_ABC"})
        if request.url.path == "/chat/getchats":
            return httpx.Response(
                200,
                json={"chats": [{"id": "521@c.us"}]},
                headers={"x-bridge": "1"},
            )
        return httpx.Response(404, json={"error": "unknown route"})


@pytest.fixture()
def whatsapp(tmp_path: Path):
    bridge = FakeBridge()
    bridge_client = WhatsAppBridgeClient(
        "http://bridge.local:3000", transport=httpx.MockTransport(bridge)
    )
    store = LocalSessionStore(str(tmp_path / "sessions"))
    session = MessagingSessionAdapter(
        bridge=bridge_client,
        relay=WebhookRelay(enabled=False, url=None),
        session_store=store,
        session_id="whatsapp-node-api",
        qr_path=str(tmp_path / "last.qr"),
    )
    app.dependency_overrides.update(
        {
            dependencies.get_whatsapp_bridge_client: lambda: bridge_client,
            dependencies.get_session_store: lambda: store,
            dependencies.get_messaging_session: lambda: session,
        }
    )
    yield SimpleNamespace(bridge=bridge, store=store, session=session)
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(whatsapp):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as http_client:
        yield http_client


@pytest.mark.anyio
async def test_events_drive_session_state(client: httpx.AsyncClient, whatsapp) -> None:
    qr = await client.post("/whatsapp/events", json={"event": "qr", "data": "2@qr-payload"})
    pending = await client.get("/whatsapp/qr")
    await client.post("/whatsapp/events", json={"event": "authenticated"})
    await client.post("/whatsapp/events", json={"event": "ready"})
    status = await client.get("/whatsapp/status")

    assert qr.json() == {"status": "received"}
    assert pending.text == "2@qr-payload"
    assert status.json()["ready"] is True
    assert (await client.get("/whatsapp/qr")).status_code == 404


@pytest.mark.anyio
async def test_unknown_event_is_rejected(client: httpx.AsyncClient) -> None:
    response = await client.post("/whatsapp/events", json={"event": "call", "data": {}})

    assert response.status_code == 422


@pytest.mark.anyio
async def test_events_after_auth_failure_are_ignored(client: httpx.AsyncClient, whatsapp) -> None:
    await client.post(
        "/whatsapp/events", json={"event": "auth_failure", "data": {"message": "bad"}}
    )

    response = await client.post("/whatsapp/events", json={"event": "ready"})

    assert response.json() == {"status": "ignored"}
    assert not whatsapp.session.ready


@pytest.mark.anyio
async def test_send_message_goes_through_bridge(client: httpx.AsyncClient, whatsapp) -> None:
    response = await client.post(
        "/whatsapp/send", json={"chatId": "5215512345678@c.us", "text": "Factura lista"}
    )

    assert response.status_code == 200
    assert response.json()["result"] == {"id": "true_521@c.us_ABC"}
    sent = whatsapp.bridge.requests[-1]
    assert json.loads(sent.content) == {"chatId": "5215512345678@c.us", "text": "Factura lista"}


@pytest.mark.anyio
async def test_send_message_with_bridge_down(client: httpx.AsyncClient, whatsapp) -> None:
    whatsapp.bridge.down = True

    response = await client.post("/whatsapp/send", json={"chatId": "521@c.us", "text": "hola"})

    assert response.status_code == 502
    assert response.json()["detail"]["error"] == "bridge_unavailable"


@pytest.mark.anyio
async def test_send_after_pairing_failure_is_conflict(client: httpx.AsyncClient) -> None:
    await client.post("/whatsapp/events", json={"event": "auth_failure", "data": "bad"})

    response = await client.post("/whatsapp/send", json={"chatId": "521@c.us", "text": "hola"})

    assert response.status_code == 409


@pytest.mark.anyio
async def test_session_archive_lifecycle(client: httpx.AsyncClient) -> None:
    url = "/whatsapp/session/whatsapp-node-api"
    archive = b"PK\x03\x04session-bytes"

    assert (await client.head(url)).status_code == 404
    assert (await client.put(url, content=archive)).status_code == 204
    assert (await client.head(url)).status_code == 200
    fetched = await client.get(url)
    assert fetched.content == archive
    assert fetched.headers["content-type"] == "application/zip"
    assert (await client.delete(url)).status_code == 204
    assert (await client.get(url)).status_code == 404


@pytest.mark.anyio
async def test_session_id_is_validated(client: httpx.AsyncClient) -> None:
    response = await client.put("/whatsapp/session/bad%20id", content=b"data")

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_session"


@pytest.mark.anyio
async def test_empty_session_archive_is_rejected(client: httpx.AsyncClient) -> None:
    response = await client.put("/whatsapp/session/whatsapp-node-api", content=b"")

    assert response.status_code == 400


@pytest.mark.anyio
async def test_bridge_routes_are_proxied(client: httpx.AsyncClient, whatsapp) -> None:
    response = await client.get("/chat/getchats", params={"limit": "5"})

    assert response.status_code == 200
    assert response.json() == {"chats": [{"id": "521@c.us"}]}
    assert response.headers["x-bridge"] == "1"
    forwarded = whatsapp.bridge.requests[-1]
    assert forwarded.url.path == "/chat/getchats"
    assert forwarded.url.params["limit"] == "5"


@pytest.mark.anyio
async def test_proxy_preserves_bridge_status(client: httpx.AsyncClient) -> None:
    response = await client.post("/group/unknown", json={"name": "x"})

    assert response.status_code == 404
    assert response.json() == {"error": "unknown route"}


@pytest.mark.anyio
async def test_proxy_with_bridge_down(client: httpx.AsyncClient, whatsapp) -> None:
    whatsapp.bridge.down = True

    response = await client.get("/contact/getcontacts")

    assert response.status_code == 502
