from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any

from touchbase.errors import ValidationError

RELATIONSHIP_FREQUENCIES = ("never", "week", "month", "3months", "6months", "year", "yearly")
# Reminders additionally repeat daily or fire just once.
REMINDER_FREQUENCIES = RELATIONSHIP_FREQUENCIES + ("daily", "once")

LAST_CONTACT_OPTIONS = ("today", "yesterday", "week", "month", "3months", "6months", "year", "custom")
CONTACT_METHODS = ("call", "text", "email", "inPerson", "other")

ACTIVITY_TYPES = ("note", "interaction", "reminder")
INTERACTION_TYPES = ("call", "text", "email", "inPerson")

REMINDER_TYPES = (
    "follow_up",
    "meeting",
    "call",
    "birthday",
    "anniversary",
    "check_in",
    "task_reminder",
    "appointment",
    "deadline_reminder",
    "personal_event",
    "work_event",
    "other",
)

REMINDER_TABS = ("all", "missed", "thisWeek", "upcoming")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp into an aware datetime (naive values are UTC)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError({"date": f"Invalid date: {value!r}"}) from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Always UTC so stored timestamps sort as strings.
    return value.astimezone(timezone.utc).isoformat()


def normalize_name(name: str) -> str:
    """Dedup key for contact names: trimmed and case-folded."""
    return (name or "").strip().casefold()


@dataclass
class PhoneNumber:
    number: str = ""
    label: str = ""


@dataclass
class EmailAddress:
    email: str = ""
    label: str = ""


@dataclass
class FamilyInfo:
    kids: str = ""
    siblings: str = ""
    spouse: str = ""

    def to_dict(self) -> dict:
        return {"kids": self.kids, "siblings": self.siblings, "spouse": self.spouse}

    @classmethod
    def from_dict(cls, data: dict | None) -> FamilyInfo:
        data = data or {}
        return cls(
            kids=data.get("kids", ""),
            siblings=data.get("siblings", ""),
            spouse=data.get("spouse", ""),
        )


@dataclass
class ContactData:
    phones: list[PhoneNumber] = field(default_factory=list)
    emails: list[EmailAddress] = field(default_factory=list)
    website: str = ""
    linkedin: str = ""
    twitter: str = ""
    instagram: str = ""
    facebook: str = ""
    company: str = ""
    job_title: str = ""
    address: str = ""
    birthday: str = ""
    notes: str = ""

    def to_dict(self) -> dict:
        return {
            "phones": [{"number": p.number, "label": p.label} for p in self.phones],
            "emails": [{"email": e.email, "label": e.label} for e in self.emails],
            "website": self.website,
            "linkedin": self.linkedin,
            "twitter": self.twitter,
            "instagram": self.instagram,
            "facebook": self.facebook,
            "company": self.company,
            "jobTitle": self.job_title,
            "address": self.address,
            "birthday": self.birthday,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> ContactData:
        data = data or {}
        return cls(
            phones=[
                PhoneNumber(number=p.get("number", ""), label=p.get("label", ""))
                for p in data.get("phones", [])
            ],
            emails=[
                EmailAddress(email=e.get("email", ""), label=e.get("label", ""))
                for e in data.get("emails", [])
            ],
            website=data.get("website", ""),
            linkedin=data.get("linkedin", ""),
            twitter=data.get("twitter", ""),
            instagram=data.get("instagram", ""),
            facebook=data.get("facebook", ""),
            company=data.get("company", ""),
            job_title=data.get("jobTitle", ""),
            address=data.get("address", ""),
            birthday=data.get("birthday", ""),
            notes=data.get("notes", ""),
        )


@dataclass
class DeviceContact:
    """A read-only record from the device address book."""

    name: str = ""
    id: str = ""
    phones: list[PhoneNumber] = field(default_factory=list)
    emails: list[EmailAddress] = field(default_factory=list)
    company: str = ""
    job_title: str = ""
    address: str = ""
    birthday: str = ""
    note: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> DeviceContact:
        return cls(
            name=data.get("name", ""),
            id=str(data.get("id", "")),
            phones=[
                PhoneNumber(number=p.get("number", ""), label=p.get("label", ""))
                for p in data.get("phones", [])
            ],
            emails=[
                EmailAddress(email=e.get("email", ""), label=e.get("label", ""))
                for e in data.get("emails", [])
            ],
            company=data.get("company", ""),
            job_title=data.get("jobTitle", ""),
            address=data.get("address", ""),
            birthday=data.get("birthday", ""),
            note=data.get("note", ""),
        )


@dataclass
class Relationship:
    id: str = ""
    user_id: str = ""
    contact_id: str = ""
    contact_name: str = ""
    last_contact_date: datetime | None = None
    last_contact_method: str = "other"
    reminder_frequency: str = "month"
    next_reminder_date: datetime | None = None
    tags: list[str] = field(default_factory=list)
    notes: str = ""
    family_info: FamilyInfo = field(default_factory=FamilyInfo)
    contact_data: ContactData = field(default_factory=ContactData)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "contactId": self.contact_id,
            "contactName": self.contact_name,
            "lastContactDate": format_timestamp(self.last_contact_date),
            "lastContactMethod": self.last_contact_method,
            "reminderFrequency": self.reminder_frequency,
            "nextReminderDate": format_timestamp(self.next_reminder_date),
            "tags": list(dict.fromkeys(self.tags)),
            "notes": self.notes,
            "familyInfo": self.family_info.to_dict(),
            "contactData": self.contact_data.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Relationship:
        return cls(
            id=data.get("id", ""),
            user_id=data.get("userId", ""),
            contact_id=data.get("contactId", ""),
            contact_name=data.get("contactName", ""),
            last_contact_date=parse_timestamp(data.get("lastContactDate")),
            last_contact_method=data.get("lastContactMethod", "other"),
            reminder_frequency=data.get("reminderFrequency", "month"),
            next_reminder_date=parse_timestamp(data.get("nextReminderDate")),
            tags=list(data.get("tags", [])),
            notes=data.get("notes", ""),
            family_info=FamilyInfo.from_dict(data.get("familyInfo")),
            contact_data=ContactData.from_dict(data.get("contactData")),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )


@dataclass
class Activity:
    id: str = ""
    user_id: str = ""
    type: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    is_archived: bool = False
    contact_id: str = ""
    contact_name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "type": self.type,
            "description": self.description,
            "tags": list(self.tags),
            "isArchived": self.is_archived,
            "contactId": self.contact_id,
            "contactName": self.contact_name,
        }


def _activity_base(data: dict) -> dict:
    return {
        "id": data.get("id", ""),
        "user_id": data.get("userId", ""),
        "description": data.get("description", ""),
        "tags": list(data.get("tags", [])),
        "is_archived": bool(data.get("isArchived", False)),
        "contact_id": data.get("contactId", ""),
        "contact_name": data.get("contactName", ""),
        "created_at": parse_timestamp(data.get("createdAt")),
        "updated_at": parse_timestamp(data.get("updatedAt")),
    }


@dataclass
class NoteActivity(Activity):
    type: str = "note"
    content: str = ""
    category: str = "general"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"content": self.content, "category": self.category})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> NoteActivity:
        return cls(
            **_activity_base(data),
            content=data.get("content", ""),
            category=data.get("category") or "general",
        )


@dataclass
class InteractionActivity(Activity):
    type: str = "interaction"
    interaction_type: str = "call"
    date: datetime | None = None
    duration: int = 0
    location: str = ""

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            {
                "interactionType": self.interaction_type,
                "date": format_timestamp(self.date),
                "duration": self.duration,
                "location": self.location,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> InteractionActivity:
        return cls(
            **_activity_base(data),
            interaction_type=data.get("interactionType") or "call",
            date=parse_timestamp(data.get("date")),
            duration=int(data.get("duration") or 0),
            location=data.get("location", ""),
        )


@dataclass
class ReminderActivity(Activity):
    type: str = "reminder"
    reminder_date: datetime | None = None
    reminder_type: str = "follow_up"
    frequency: str = "month"
    reminder_id: str = ""
    is_completed: bool = False
    completed_at: datetime | None = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            {
                "reminderDate": format_timestamp(self.reminder_date),
                "reminderType": self.reminder_type,
                "frequency": self.frequency,
                "reminderId": self.reminder_id,
                "isCompleted": self.is_completed,
                "completedAt": format_timestamp(self.completed_at) or None,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ReminderActivity:
        return cls(
            **_activity_base(data),
            reminder_date=parse_timestamp(data.get("reminderDate")),
            reminder_type=data.get("reminderType") or "follow_up",
            frequency=data.get("frequency") or "month",
            reminder_id=data.get("reminderId") or "",
            is_completed=bool(data.get("isCompleted", False)),
            completed_at=parse_timestamp(data.get("completedAt")),
        )


ACTIVITY_CLASSES: dict[str, type[Activity]] = {
    "note": NoteActivity,
    "interaction": InteractionActivity,
    "reminder": ReminderActivity,
}


def activity_from_dict(data: dict) -> Activity:
    """Build the Activity variant named by ``data["type"]``."""
    activity_type = data.get("type")
    cls = ACTIVITY_CLASSES.get(activity_type)
    if cls is None:
        raise ValidationError(
            {"type": f"Activity type must be one of {', '.join(ACTIVITY_TYPES)}, got {activity_type!r}"}
        )
    return cls.from_dict(data)


def field_names(cls: type) -> set[str]:
    return {f.name for f in fields(cls)}


@dataclass
class Reminder:
    id: str = ""
    user_id: str = ""
    contact_name: str = ""
    contact_id: str = ""
    relationship_id: str = ""
    type: str = "follow_up"
    date: datetime | None = None
    frequency: str = "month"
    tags: list[str] = field(default_factory=list)
    notes: str = ""
    # derived on every read
    is_overdue: bool = False
    is_this_week: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "contactName": self.contact_name,
            "contactId": self.contact_id,
            "relationshipId": self.relationship_id,
            "type": self.type,
            "date": format_timestamp(self.date),
            "frequency": self.frequency,
            "tags": list(self.tags),
            "notes": self.notes,
            "isOverdue": self.is_overdue,
            "isThisWeek": self.is_this_week,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Reminder:
        return cls(
            id=data.get("id", ""),
            user_id=data.get("userId", ""),
            contact_name=data.get("contactName", ""),
            contact_id=data.get("contactId", ""),
            relationship_id=data.get("relationshipId", ""),
            type=data.get("type") or "follow_up",
            date=parse_timestamp(data.get("date")),
            frequency=data.get("frequency") or "month",
            tags=list(data.get("tags", [])),
            notes=data.get("notes", ""),
            is_overdue=bool(data.get("isOverdue", False)),
            is_this_week=bool(data.get("isThisWeek", False)),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )


def to_wire(entity: Relationship | Activity | Reminder) -> dict:
    """Full JSON-ready representation including id and timestamps."""
    data = entity.to_dict()
    data["id"] = entity.id
    data["createdAt"] = format_timestamp(entity.created_at)
    data["updatedAt"] = format_timestamp(entity.updated_at)
    return data
