from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from touchbase.models import ContactData, DeviceContact, normalize_name

logger = logging.getLogger(__name__)


class ContactDirectory(Protocol):
    """Read-only source of device contacts. May be unavailable."""

    @property
    def available(self) -> bool:
        ...

    async def list_contacts(self) -> list[DeviceContact]:
        ...


class NullContactDirectory:
    """No address book on this device (or permission was refused)."""

    available = False

    async def list_contacts(self) -> list[DeviceContact]:
        return []


class JsonContactDirectory:
    """Contacts exported from a device address book as a JSON array."""

    def __init__(self, path: Path, granted: bool = True):
        self.path = path
        self.granted = granted
        self._contacts: list[DeviceContact] | None = None

    @property
    def available(self) -> bool:
        return self.granted and self.path.exists()

    async def list_contacts(self) -> list[DeviceContact]:
        if not self.available:
            return []
        if self._contacts is None:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            self._contacts = [DeviceContact.from_dict(item) for item in raw if item.get("name")]
            logger.info("Loaded %d device contacts from %s", len(self._contacts), self.path)
        return list(self._contacts)


async def search_contacts(directory: ContactDirectory, query: str) -> list[DeviceContact]:
    """Match by name, first phone number or first email."""
    contacts = await directory.list_contacts()
    needle = query.strip().lower()
    if not needle:
        return contacts

    def matches(c: DeviceContact) -> bool:
        if needle in c.name.lower():
            return True
        if c.phones and needle in c.phones[0].number:
            return True
        return bool(c.emails) and needle in c.emails[0].email.lower()

    return [c for c in contacts if matches(c)]


async def find_contact(directory: ContactDirectory, name: str) -> DeviceContact | None:
    key = normalize_name(name)
    for contact in await directory.list_contacts():
        if normalize_name(contact.name) == key:
            return contact
    return None


def contact_data_from(contact: DeviceContact | None) -> ContactData:
    if contact is None:
        return ContactData()
    return ContactData(
        phones=list(contact.phones),
        emails=list(contact.emails),
        company=contact.company,
        job_title=contact.job_title,
        address=contact.address,
        birthday=contact.birthday,
        notes=contact.note,
    )
