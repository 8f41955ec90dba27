"""
FastAPI routes for the QuickBooks session and the Google contacts pass-through.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from pathlib import Path
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, RedirectResponse
from googleapiclient.errors import HttpError
from intuitlib.enums import Scopes
from pydantic import ValidationError

from gateway.clients.google_auth import OAuthTokenExchangeError, OAuthTokenNotFoundError
from gateway.clients.token_store import StoreIOError
from gateway.dependencies import (
    get_app_settings,
    get_contacts_client,
    get_google_credential_service,
    get_google_oauth_client,
    get_oauth_state_encoder,
    get_quickbooks_session,
)
from gateway.schemas import ApiRequest, ClientConfiguration, Contact, OAuthCallbackPayload
from gateway.services.quickbooks_session import (
    ApiError,
    NotConfiguredError,
    QuickBooksSessionError,
    RefreshFailedError,
    TokenExchangeError,
    UnauthenticatedError,
)

router = APIRouter()
logger = logging.getLogger(__name__)

_STATIC_DIR = Path(__file__).resolve().parent.parent / "static"
_BRACKET_PARAM = re.compile(r"^json\[(\w+)\]$")

_SESSION_ERRORS: tuple[tuple[type[QuickBooksSessionError], HTTPStatus, str], ...] = (
    (NotConfiguredError, HTTPStatus.CONFLICT, "not_configured"),
    (UnauthenticatedError, HTTPStatus.UNAUTHORIZED, "unauthenticated"),
    (TokenExchangeError, HTTPStatus.BAD_REQUEST, "token_exchange_failed"),
    (RefreshFailedError, HTTPStatus.BAD_GATEWAY, "refresh_failed"),
    (ApiError, HTTPStatus.BAD_GATEWAY, "api_error"),
)


def _maybe_json(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return body


def _session_http_error(exc: QuickBooksSessionError) -> HTTPException:
    """Translate a session failure into an explicit status and structured body."""
    status_code, kind = HTTPStatus.INTERNAL_SERVER_ERROR, "session_error"
    for error_type, mapped_status, mapped_kind in _SESSION_ERRORS:
        if isinstance(exc, error_type):
            status_code, kind = mapped_status, mapped_kind
            break
    # Client-side faults reported by the accounting API keep their status.
    if isinstance(exc, ApiError) and exc.status_code and 400 <= exc.status_code < 500:
        status_code = HTTPStatus(exc.status_code)

    detail: dict[str, Any] = {"error": kind, "message": str(exc)}
    if exc.status_code is not None:
        detail["upstream_status"] = exc.status_code
    if exc.body:
        detail["upstream_body"] = _maybe_json(exc.body)
    return HTTPException(status_code=status_code, detail=detail)


def _parse_client_configuration(request: Request) -> ClientConfiguration:
    """Accept ``json`` as an encoded object or as ``json[field]`` parameters."""
    params = request.query_params
    raw = params.get("json")
    if raw:
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise HTTPException(
                status_code=HTTPStatus.BAD_REQUEST,
                detail={"error": "invalid_configuration", "message": "json is not valid JSON."},
            ) from exc
        if not isinstance(data, dict):
            raise HTTPException(
                status_code=HTTPStatus.BAD_REQUEST,
                detail={"error": "invalid_configuration", "message": "json must be an object."},
            )
    else:
        data = {}
        for key, value in params.multi_items():
            match = _BRACKET_PARAM.match(key)
            if match:
                data[match.group(1)] = value

    try:
        return ClientConfiguration.model_validate(data)
    except ValidationError as exc:
        missing = ", ".join(str(error["loc"][-1]) for error in exc.errors())
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail={
                "error": "invalid_configuration",
                "message": f"Missing or invalid fields: {missing}",
            },
        ) from exc


def _realm_id(session: Any) -> str:
    record = session.token_record
    if record is None or not record.realm_id:
        raise _session_http_error(
            UnauthenticatedError("No authorized realm; complete the OAuth callback first.")
        )
    return record.realm_id


@router.get("/", include_in_schema=False)
async def landing_page() -> FileResponse:
    """Static page collecting the Intuit app credentials."""
    return FileResponse(_STATIC_DIR / "index.html", media_type="text/html")


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck(
    session: Annotated[Any, Depends(get_quickbooks_session)],
) -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok", "quickbooks": session.state.value}


@router.get("/authUri", response_class=PlainTextResponse)
async def authorize_uri(
    request: Request,
    session: Annotated[Any, Depends(get_quickbooks_session)],
    settings: Annotated[Any, Depends(get_app_settings)],
) -> str:
    """Configure a new QuickBooks session and return its consent URL."""
    config = _parse_client_configuration(request)
    try:
        await session.configure(
            client_id=config.client_id,
            client_secret=config.client_secret,
            environment=config.environment,
            redirect_uri=config.redirect_uri,
        )
        return session.build_authorization_url(
            [Scopes.ACCOUNTING], state=settings.quickbooks.oauth_state
        )
    except QuickBooksSessionError as exc:
        raise _session_http_error(exc) from exc


@router.get("/callback", response_class=PlainTextResponse)
async def quickbooks_callback(
    request: Request,
    session: Annotated[Any, Depends(get_quickbooks_session)],
) -> str:
    """Exchange the authorization code carried by the callback URL."""
    logger.info("envio %s", request.url.path)
    try:
        await session.exchange_code(str(request.url))
    except QuickBooksSessionError as exc:
        raise _session_http_error(exc) from exc
    return "CREADO"


@router.get("/retrieveToken")
async def retrieve_token(
    session: Annotated[Any, Depends(get_quickbooks_session)],
) -> Response:
    """Return the current token record, or ``null`` when none exists."""
    record = session.token_record
    content = json.dumps(record.public_dump(), indent=2) if record else "null"
    return Response(content=content, media_type="application/json")


@router.get("/refreshAccessToken")
async def refresh_access_token(
    session: Annotated[Any, Depends(get_quickbooks_session)],
) -> JSONResponse:
    """Force a refresh and return the new token record."""
    try:
        record = await session.refresh(force=True)
    except QuickBooksSessionError as exc:
        raise _session_http_error(exc) from exc
    logger.info("The Refresh Token expires at %s", record.refresh_token_expires_at)
    return JSONResponse(content=record.public_dump())


@router.get("/getCompanyInfo")
async def get_company_info(
    session: Annotated[Any, Depends(get_quickbooks_session)],
) -> JSONResponse:
    """Fetch the CompanyInfo entity of the authorized realm."""
    try:
        realm_id = _realm_id(session)
        response = await session.call(
            ApiRequest(path=f"v3/company/{realm_id}/companyinfo/{realm_id}")
        )
    except QuickBooksSessionError as exc:
        raise _session_http_error(exc) from exc
    return JSONResponse(content=response.json())


@router.get("/cc")
async def create_customer(
    session: Annotated[Any, Depends(get_quickbooks_session)],
    q: str = Query(..., description="Customer entity as a JSON object."),
) -> JSONResponse:
    """Create a QuickBooks customer from the JSON passed in ``q``."""
    cors = {"Access-Control-Allow-Origin": "*"}
    try:
        customer = json.loads(q)
    except ValueError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail={"error": "invalid_customer", "message": "q is not valid JSON."},
            headers=cors,
        ) from exc

    try:
        realm_id = _realm_id(session)
        response = await session.call(
            ApiRequest(
                path=f"v3/company/{realm_id}/customer",
                method="POST",
                headers={"Content-Type": "application/json"},
                body=customer,
            )
        )
    except QuickBooksSessionError as exc:
        error = _session_http_error(exc)
        error.headers = cors
        raise error from exc
    except HTTPException as exc:
        exc.headers = cors
        raise
    return JSONResponse(content=response.json(), headers=cors)


@router.get("/disconnect")
async def disconnect(
    session: Annotated[Any, Depends(get_quickbooks_session)],
    settings: Annotated[Any, Depends(get_app_settings)],
) -> RedirectResponse:
    """Redirect to a consent URL requesting only OpenID and e-mail scopes."""
    logger.info("The disconnect called")
    try:
        url = session.build_authorization_url(
            [Scopes.OPENID, Scopes.EMAIL], state=settings.quickbooks.oauth_state
        )
    except QuickBooksSessionError as exc:
        raise _session_http_error(exc) from exc
    return RedirectResponse(url=url, status_code=HTTPStatus.TEMPORARY_REDIRECT)


async def _google_credentials(credential_service: Any) -> Any:
    try:
        return await credential_service.get_credentials()
    except OAuthTokenNotFoundError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail={
                "error": "google_unauthenticated",
                "message": str(exc),
                "authorize_url": "/google/authorize",
            },
        ) from exc
    except OAuthTokenExchangeError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY,
            detail={"error": "google_refresh_failed", "message": str(exc)},
        ) from exc


def _people_api_error(exc: HttpError) -> HTTPException:
    return HTTPException(
        status_code=HTTPStatus.BAD_GATEWAY,
        detail={
            "error": "people_api_error",
            "upstream_status": exc.resp.status,
            "message": str(exc),
        },
    )


@router.get("/list_google_contacts")
async def list_google_contacts(
    credential_service: Annotated[Any, Depends(get_google_credential_service)],
    contacts_client: Annotated[Any, Depends(get_contacts_client)],
) -> dict:
    """List the authorized user's Google connections."""
    credentials = await _google_credentials(credential_service)
    try:
        contacts = await contacts_client.list_connections(credentials)
    except HttpError as exc:
        raise _people_api_error(exc) from exc
    return {"resultg": [contact.person for contact in contacts]}


@router.post("/create_google_contact")
async def create_google_contact(
    credential_service: Annotated[Any, Depends(get_google_credential_service)],
    contacts_client: Annotated[Any, Depends(get_contacts_client)],
    given_name: str = Query(..., alias="givenName", min_length=1),
    email: str | None = Query(default=None),
    mobile: str | None = Query(default=None),
) -> dict:
    """Create a Google contact from query parameters."""
    credentials = await _google_credentials(credential_service)
    contact = Contact(display_name=given_name, email=email, mobile=mobile)
    try:
        created = await contacts_client.create_contact(credentials, contact)
    except HttpError as exc:
        logger.error("ERROR CREATE CONTACT %s", exc)
        raise _people_api_error(exc) from exc
    return {"state": True, "result": created.person}


@router.get("/google/authorize", status_code=HTTPStatus.OK)
async def start_google_oauth_flow(
    request: Request,
    oauth_client: Annotated[Any, Depends(get_google_oauth_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Google consent screen.",
    ),
) -> Any:
    """Start the Google consent flow that produces token.json."""
    state = state_encoder.encode(
        {
            "nonce": uuid.uuid4().hex,
            "issued_at": datetime.now(timezone.utc).isoformat(),
        }
    )
    authorization_url = oauth_client.build_authorization_url(state=state)

    wants_html = "text/html" in request.headers.get("accept", "").lower()
    if redirect or wants_html:
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return {"authorization_url": authorization_url, "state": state}


@router.get("/google/callback", status_code=HTTPStatus.OK)
async def handle_google_oauth_callback(
    oauth_client: Annotated[Any, Depends(get_google_oauth_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    credential_service: Annotated[Any, Depends(get_google_credential_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    state: str = Query(..., description="OAuth state token."),
    code: str = Query(..., description="Authorization code returned by Google."),
) -> dict:
    """Complete the Google exchange and persist token.json."""
    payload = OAuthCallbackPayload(state=state, code=code)
    state_data = state_encoder.decode(payload.state)

    issued_at_raw = state_data.get("issued_at")
    if not issued_at_raw:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Missing issued_at in state token.",
        )
    issued_at = datetime.fromisoformat(issued_at_raw)
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    if datetime.now(timezone.utc) - issued_at > timedelta(
        seconds=settings.oauth.state_ttl_seconds
    ):
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="OAuth state token has expired."
        )

    try:
        (
            access_token,
            refresh_token,
            expires_in,
        ) = await oauth_client.exchange_authorization_code(payload.code)
    except OAuthTokenExchangeError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Failed to exchange authorization code.",
        ) from exc

    try:
        credential_service.store_authorization(
            access_token=access_token, refresh_token=refresh_token, expires_in=expires_in
        )
    except StoreIOError as exc:
        logger.error("Google token could not be stored: %s", exc)
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail={"error": "token_store_failed", "message": str(exc)},
        ) from exc
    return {"status": "connected"}


__all__ = ["router"]
