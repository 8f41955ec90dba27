"""
FastAPI application entrypoint for the WhatsApp / QuickBooks / Google gateway.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gateway.api.messaging import router as messaging_router
from gateway.api.routes import router as api_router
from gateway.clients.google_auth import ClientSecretsError
from gateway.core.config import AppSettings, get_settings
from gateway.core.logging import configure_logging
from gateway.dependencies import (
    get_contacts_client,
    get_google_credential_service,
    get_messaging_session,
    get_quickbooks_session,
    get_token_refresh_loop,
)

logger = logging.getLogger(__name__)


def _log_setup_steps(settings: AppSettings) -> None:
    base_url = settings.base_url
    logger.info("Server listening on port %s", settings.port)
    logger.info("Step 1 : Open %s/ and enter the Intuit app keys", base_url)
    logger.info("Step 2 : Set the Intuit redirect URI to %s/callback", base_url)
    logger.info("Step 3 : Authorize Google contacts at %s/google/authorize", base_url)
    logger.info("Step 4 : Scan the WhatsApp QR from %s", settings.whatsapp.qr_path)


async def _log_google_connections() -> None:
    """List contacts once at startup when token.json is already present."""
    try:
        service = get_google_credential_service()
        if not service.has_token():
            logger.info("GOOGLE CONTACTS: not authorized yet.")
            return
        credentials = await service.get_credentials()
        contacts = await get_contacts_client().list_connections(credentials)
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("GOOGLE CONTACTS: startup listing failed: %s", exc)
        return
    for contact in contacts:
        logger.info("GOOGLE CONTACTS: %s", contact.display_name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    await get_quickbooks_session().restore()

    refresh_loop = get_token_refresh_loop()
    if settings.quickbooks.refresh_enabled:
        refresh_loop.start()

    background: set[asyncio.Task] = set()
    if settings.whatsapp.auto_start:
        events_url = f"{settings.base_url}/whatsapp/events"
        background.add(asyncio.create_task(get_messaging_session().start(events_url)))
    background.add(asyncio.create_task(_log_google_connections()))

    _log_setup_steps(settings)
    try:
        yield
    finally:
        await refresh_loop.stop()
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="WhatsApp Ledger Gateway",
        version="0.1.0",
        description=(
            "Gateway bridging a WhatsApp Web session, Google contacts and "
            "the QuickBooks Online API."
        ),
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s : %s", request.method, request.url.path)
        return await call_next(request)

    @app.exception_handler(ClientSecretsError)
    async def google_not_configured(request: Request, exc: ClientSecretsError):
        return JSONResponse(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            content={"detail": {"error": "google_not_configured", "message": str(exc)}},
        )

    app.include_router(api_router)
    app.include_router(messaging_router)
    return app


app = create_app()

__all__ = ["app", "create_app", "lifespan"]
