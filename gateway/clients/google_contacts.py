"""Google People API client wrapper for contact listing and creation."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, List

from googleapiclient.discovery import build

from gateway.schemas.contacts import Contact

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from google.oauth2.credentials import Credentials

logger = logging.getLogger(__name__)

PERSON_FIELDS = "names,emailAddresses,phoneNumbers"


class GoogleContactsClient:
    """Read and write the authorized user's contacts."""

    def __init__(self, page_size: int = 100) -> None:
        self._page_size = page_size

    async def list_connections(self, credentials: "Credentials") -> List[Contact]:
        """Return the connections of ``people/me``; empty when there are none."""

        def _execute_list() -> List[Dict[str, Any]]:
            service = build("people", "v1", credentials=credentials, cache_discovery=False)
            response = (
                service.people()
                .connections()
                .list(
                    resourceName="people/me",
                    personFields=PERSON_FIELDS,
                    pageSize=self._page_size,
                )
                .execute()
            )
            return response.get("connections", [])

        connections = await asyncio.to_thread(_execute_list)
        if not connections:
            logger.info("GOOGLE CONTACTS: No connections found.")
            return []

        contacts = [Contact.from_person(person) for person in connections]
        for contact in contacts:
            if contact.display_name:
                logger.debug("Connection: %s", contact.display_name)
            else:
                logger.debug("No display name found for connection.")
        return contacts

    async def create_contact(self, credentials: "Credentials", contact: Contact) -> Contact:
        """Create ``contact`` and return it as stored by Google."""

        def _execute_create() -> Dict[str, Any]:
            service = build("people", "v1", credentials=credentials, cache_discovery=False)
            return (
                service.people()
                .createContact(body=contact.to_person(), personFields=PERSON_FIELDS)
                .execute()
            )

        created = await asyncio.to_thread(_execute_create)
        logger.info("Created Google contact %s", created.get("resourceName"))
        return Contact.from_person(created)


__all__ = ["GoogleContactsClient", "PERSON_FIELDS"]
