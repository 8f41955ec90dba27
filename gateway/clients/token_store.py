"""File-backed persistence for OAuth token payloads."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from gateway.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class StoreIOError(Exception):
    """Raised when a credential file cannot be written."""


class FileTokenStore:
    """Whole-file JSON store; the last writer wins."""

    def __init__(self, path: str, cipher: "TokenCipherService | None" = None) -> None:
        self._path = Path(path)
        self._cipher = cipher

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored payload, or ``None`` when absent or unreadable."""
        if not self._path.exists():
            return None
        try:
            raw = self._path.read_bytes()
            if self._cipher is not None:
                raw = self._cipher.decrypt_bytes(raw)
            payload = json.loads(raw)
        except (OSError, ValueError) as exc:
            logger.warning("Unable to read credential file %s: %s", self._path, exc)
            return None
        if not isinstance(payload, dict):
            logger.warning("Credential file %s does not hold an object", self._path)
            return None
        return payload

    def save(self, payload: Dict[str, Any]) -> None:
        """Overwrite the file with ``payload``."""
        raw = json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")
        if self._cipher is not None:
            raw = self._cipher.encrypt_bytes(raw)
        try:
            if self._path.parent and not self._path.parent.exists():
                self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_bytes(raw)
        except OSError as exc:
            raise StoreIOError(f"Unable to write {self._path}: {exc}") from exc

    def delete(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StoreIOError(f"Unable to delete {self._path}: {exc}") from exc


__all__ = ["FileTokenStore", "StoreIOError"]
