"""Periodic keepalive for the QuickBooks access token."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from gateway.services.quickbooks_session import (
    NotConfiguredError,
    QuickBooksSessionError,
    UnauthenticatedError,
)

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from gateway.schemas.quickbooks import TokenRecord
    from gateway.services.quickbooks_session import QuickBooksSessionManager

logger = logging.getLogger(__name__)


class TokenRefreshLoop:
    """Call ``refresh()`` on a fixed interval for the lifetime of the app."""

    def __init__(
        self, session: "QuickBooksSessionManager", *, interval_seconds: float = 300.0
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Refresh interval must be positive.")
        self._session = session
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Optional["TokenRecord"]:
        """Run a single tick; failures are logged and never raised."""
        self.ticks += 1
        logger.info("Running task refresh token")
        try:
            return await self._session.refresh()
        except (NotConfiguredError, UnauthenticatedError) as exc:
            logger.info("Skipping token refresh: %s", exc)
        except QuickBooksSessionError as exc:
            logger.error("Token refresh failed: %s", exc)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error during token refresh")
        return None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="qbo-token-refresh")
        logger.info("Token refresh loop started (every %ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Token refresh loop stopped")


__all__ = ["TokenRefreshLoop"]
