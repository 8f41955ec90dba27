"""Persistence for the opaque WhatsApp session archive."""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from bson.binary import Binary
from motor.motor_asyncio import AsyncIOMotorDatabase

logger = logging.getLogger(__name__)

_SAFE_SESSION = re.compile(r"^[A-Za-z0-9_.-]+$")


def _validate_session_id(session_id: str) -> str:
    if not _SAFE_SESSION.match(session_id):
        raise ValueError(f"Invalid session id {session_id!r}")
    return session_id


class SessionStore(Protocol):
    async def exists(self, session_id: str) -> bool: ...

    async def save(self, session_id: str, data: bytes) -> None: ...

    async def extract(self, session_id: str) -> Optional[bytes]: ...

    async def delete(self, session_id: str) -> None: ...


class LocalSessionStore:
    """Keep each session archive as ``<directory>/<session>.zip``."""

    def __init__(self, directory: str) -> None:
        self._directory = Path(directory)

    def _path(self, session_id: str) -> Path:
        return self._directory / f"{_validate_session_id(session_id)}.zip"

    async def exists(self, session_id: str) -> bool:
        return self._path(session_id).exists()

    async def save(self, session_id: str, data: bytes) -> None:
        path = self._path(session_id)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info("Saved WhatsApp session %s (%d bytes)", session_id, len(data))

    async def extract(self, session_id: str) -> Optional[bytes]:
        path = self._path(session_id)
        if not path.exists():
            return None
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)
        logger.info("Deleted WhatsApp session %s", session_id)


class MongoSessionStore:
    """Store session archives in a MongoDB collection."""

    def __init__(
        self, database: AsyncIOMotorDatabase, collection: str = "whatsapp_sessions"
    ) -> None:
        self._collection = database.get_collection(collection)

    async def exists(self, session_id: str) -> bool:
        count = await self._collection.count_documents(
            {"session": _validate_session_id(session_id)}, limit=1
        )
        return count > 0

    async def save(self, session_id: str, data: bytes) -> None:
        await self._collection.update_one(
            {"session": _validate_session_id(session_id)},
            {
                "$set": {
                    "data": Binary(data),
                    "updated_at": datetime.now(timezone.utc),
                }
            },
            upsert=True,
        )
        logger.info("Saved WhatsApp session %s to MongoDB", session_id)

    async def extract(self, session_id: str) -> Optional[bytes]:
        document = await self._collection.find_one(
            {"session": _validate_session_id(session_id)}
        )
        if not document:
            return None
        return bytes(document["data"])

    async def delete(self, session_id: str) -> None:
        await self._collection.delete_one({"session": _validate_session_id(session_id)})
        logger.info("Deleted WhatsApp session %s from MongoDB", session_id)


__all__ = ["LocalSessionStore", "MongoSessionStore", "SessionStore"]
