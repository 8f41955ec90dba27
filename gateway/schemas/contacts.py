"""Schemas for the Google contacts pass-through."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Contact(BaseModel):
    """A person as read from or written to the People API."""

    display_name: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    resource_name: Optional[str] = None
    person: Dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_person(cls, person: Dict[str, Any]) -> "Contact":
        names = person.get("names") or []
        emails = person.get("emailAddresses") or []
        phones = person.get("phoneNumbers") or []
        return cls(
            display_name=names[0].get("displayName") if names else None,
            email=emails[0].get("value") if emails else None,
            mobile=phones[0].get("value") if phones else None,
            resource_name=person.get("resourceName"),
            person=person,
        )

    def to_person(self) -> Dict[str, Any]:
        """Build the People API resource used by ``createContact``."""
        resource: Dict[str, Any] = {"names": [{"givenName": self.display_name or ""}]}
        if self.email:
            resource["emailAddresses"] = [{"value": self.email, "type": "home"}]
        if self.mobile:
            resource["phoneNumbers"] = [{"value": self.mobile, "type": "home"}]
        return resource


__all__ = ["Contact"]
