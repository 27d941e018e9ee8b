"""Request bodies for the JSON API.

Field names are snake_case in Python and camelCase on the wire, matching the
stored documents.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from touchbase.errors import ValidationError
from touchbase.models import ContactData, FamilyInfo, parse_timestamp
from touchbase.services.frequency import last_contact_date


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class RelationshipIn(WireModel):
    """
    Body of an explicit "add relationship" request.

    ``last_contact_option`` (today, yesterday, week, ...) may be sent instead
    of an exact ``last_contact_date``.
    """

    contact_name: str
    contact_id: str = ""
    last_contact_date: Optional[datetime] = None
    last_contact_option: Optional[str] = None
    last_contact_method: str = "other"
    reminder_frequency: str = "month"
    tags: list[str] = []
    notes: str = ""
    family_info: Optional[dict] = None
    contact_data: Optional[dict] = None

    def to_wire(self, now: datetime | None = None) -> dict:
        data = super().to_wire()
        option = data.pop("lastContactOption", None)
        if option and not self.last_contact_date:
            try:
                when = last_contact_date(option, now=now)
            except ValueError as exc:
                raise ValidationError({"lastContactOption": str(exc)}) from None
            data["lastContactDate"] = when.isoformat()
        return data


class RelationshipPatch(WireModel):
    contact_name: Optional[str] = None
    contact_id: Optional[str] = None
    last_contact_date: Optional[datetime] = None
    last_contact_method: Optional[str] = None
    reminder_frequency: Optional[str] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = None
    family_info: Optional[dict] = None
    contact_data: Optional[dict] = None

    def changes(self) -> dict:
        changes = self.model_dump(exclude_unset=True, exclude_none=True)
        if "last_contact_date" in changes:
            changes["last_contact_date"] = parse_timestamp(changes["last_contact_date"])
        if "family_info" in changes:
            changes["family_info"] = FamilyInfo.from_dict(changes["family_info"])
        if "contact_data" in changes:
            changes["contact_data"] = ContactData.from_dict(changes["contact_data"])
        return changes


class ActivityIn(WireModel):
    """One body for all three activity variants; ``type`` picks the variant."""

    type: str
    description: str = ""
    tags: list[str] = []
    contact_id: str = ""
    contact_name: str = ""
    # note
    content: Optional[str] = None
    category: Optional[str] = None
    # interaction
    interaction_type: Optional[str] = None
    date: Optional[datetime] = None
    duration: Optional[int] = None
    location: Optional[str] = None
    # reminder
    reminder_date: Optional[datetime] = None
    reminder_type: Optional[str] = None
    frequency: Optional[str] = None


class ActivityPatch(WireModel):
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    interaction_type: Optional[str] = None
    date: Optional[datetime] = None
    duration: Optional[int] = None
    location: Optional[str] = None
    reminder_date: Optional[datetime] = None
    reminder_type: Optional[str] = None
    frequency: Optional[str] = None

    def changes(self) -> dict:
        changes = self.model_dump(exclude_unset=True, exclude_none=True)
        for key in ("date", "reminder_date"):
            if key in changes:
                changes[key] = parse_timestamp(changes[key])
        return changes


class SnoozeIn(WireModel):
    days: int = 1
