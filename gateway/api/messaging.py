"""
WhatsApp routes: bridge event intake, session archive storage, sending, and
the pass-through to the bridge's own chat/group/auth/contact routes.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import PlainTextResponse

from gateway.clients.whatsapp_bridge import BridgeError, forwardable_headers
from gateway.dependencies import (
    get_messaging_session,
    get_session_store,
    get_whatsapp_bridge_client,
)
from gateway.schemas.messaging import BridgeEvent, SendMessageRequest
from gateway.services.messaging_session import PairingFailedError

router = APIRouter()
logger = logging.getLogger(__name__)

BRIDGE_PREFIXES = ("chat", "group", "auth", "contact")
PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def _bridge_http_error(exc: BridgeError) -> HTTPException:
    detail: dict[str, Any] = {"error": "bridge_unavailable", "message": str(exc)}
    if exc.status_code is not None:
        detail["upstream_status"] = exc.status_code
    return HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=detail)


def _invalid_session(exc: ValueError) -> HTTPException:
    return HTTPException(
        status_code=HTTPStatus.BAD_REQUEST,
        detail={"error": "invalid_session", "message": str(exc)},
    )


@router.post("/whatsapp/events")
async def receive_bridge_event(
    event: BridgeEvent,
    session: Annotated[Any, Depends(get_messaging_session)],
) -> dict:
    """Apply an event pushed by the bridge."""
    if session.terminated:
        return {"status": "ignored"}
    await session.dispatch(event)
    return {"status": "received"}


@router.get("/whatsapp/status")
async def whatsapp_status(
    session: Annotated[Any, Depends(get_messaging_session)],
) -> dict:
    return session.status()


@router.get("/whatsapp/qr", response_class=PlainTextResponse)
async def whatsapp_qr(
    session: Annotated[Any, Depends(get_messaging_session)],
) -> str:
    """Return the last pairing QR payload, if one is pending."""
    if not session.qr_path.exists():
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail={"error": "no_qr", "message": "No pairing QR is pending."},
        )
    return session.qr_path.read_text(encoding="utf-8")


@router.post("/whatsapp/send")
async def send_whatsapp_message(
    payload: SendMessageRequest,
    session: Annotated[Any, Depends(get_messaging_session)],
) -> dict:
    try:
        result = await session.send_message(payload.chat_id, payload.text)
    except PairingFailedError as exc:
        raise HTTPException(
            status_code=HTTPStatus.CONFLICT,
            detail={"error": "pairing_failed", "message": str(exc)},
        ) from exc
    except BridgeError as exc:
        raise _bridge_http_error(exc) from exc
    return {"status": "sent", "result": result}


@router.head("/whatsapp/session/{session_id}")
async def session_exists(
    session_id: str,
    store: Annotated[Any, Depends(get_session_store)],
) -> Response:
    try:
        found = await store.exists(session_id)
    except ValueError as exc:
        raise _invalid_session(exc) from exc
    return Response(status_code=HTTPStatus.OK if found else HTTPStatus.NOT_FOUND)


@router.get("/whatsapp/session/{session_id}")
async def extract_session(
    session_id: str,
    store: Annotated[Any, Depends(get_session_store)],
) -> Response:
    """Return the stored session archive for the bridge to restore."""
    try:
        data = await store.extract(session_id)
    except ValueError as exc:
        raise _invalid_session(exc) from exc
    if data is None:
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail={"error": "session_not_found", "message": f"No session {session_id}."},
        )
    return Response(content=data, media_type="application/zip")


@router.put("/whatsapp/session/{session_id}", status_code=HTTPStatus.NO_CONTENT)
async def save_session(
    session_id: str,
    request: Request,
    store: Annotated[Any, Depends(get_session_store)],
) -> Response:
    data = await request.body()
    if not data:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail={"error": "empty_session", "message": "Session archive is empty."},
        )
    try:
        await store.save(session_id, data)
    except ValueError as exc:
        raise _invalid_session(exc) from exc
    return Response(status_code=HTTPStatus.NO_CONTENT)


@router.delete("/whatsapp/session/{session_id}", status_code=HTTPStatus.NO_CONTENT)
async def delete_session(
    session_id: str,
    store: Annotated[Any, Depends(get_session_store)],
) -> Response:
    try:
        await store.delete(session_id)
    except ValueError as exc:
        raise _invalid_session(exc) from exc
    return Response(status_code=HTTPStatus.NO_CONTENT)


async def proxy_to_bridge(
    path: str,
    request: Request,
    bridge: Annotated[Any, Depends(get_whatsapp_bridge_client)],
) -> Response:
    """Relay the request unchanged to the bridge route of the same path."""
    try:
        upstream = await bridge.proxy(
            request.method,
            request.url.path,
            params=request.query_params,
            headers=request.headers,
            content=await request.body(),
        )
    except BridgeError as exc:
        raise _bridge_http_error(exc) from exc

    # httpx has already decoded the body.
    headers = {
        key: value
        for key, value in forwardable_headers(upstream.headers).items()
        if key.lower() != "content-encoding"
    }
    return Response(
        content=upstream.content, status_code=upstream.status_code, headers=headers
    )


for _prefix in BRIDGE_PREFIXES:
    router.add_api_route(
        f"/{_prefix}/{{path:path}}",
        proxy_to_bridge,
        methods=PROXY_METHODS,
        include_in_schema=False,
    )


__all__ = ["BRIDGE_PREFIXES", "router"]
