from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Callable

from touchbase.auth import check_owner, require_user
from touchbase.db import DocumentStore
from touchbase.errors import ValidationError
from touchbase.models import (
    INTERACTION_TYPES,
    REMINDER_FREQUENCIES,
    Activity,
    InteractionActivity,
    ReminderActivity,
    activity_from_dict,
    field_names,
    normalize_name,
    utc_now,
)

logger = logging.getLogger(__name__)

COLLECTION = "activities"

_READ_ONLY = {"id", "user_id", "created_at", "updated_at"}


def _check_variant(activity: Activity) -> None:
    errors = {}
    if isinstance(activity, InteractionActivity):
        if not activity.contact_name.strip():
            errors["contactName"] = "Contact name is required for interactions"
        if activity.interaction_type not in INTERACTION_TYPES:
            errors["interactionType"] = f"Unknown interaction type {activity.interaction_type!r}"
        if activity.duration < 0:
            errors["duration"] = "Duration cannot be negative"
    elif isinstance(activity, ReminderActivity):
        if not activity.contact_name.strip():
            errors["contactName"] = "Contact name is required for reminders"
        if activity.frequency not in REMINDER_FREQUENCIES:
            errors["frequency"] = f"Unknown frequency {activity.frequency!r}"
    if errors:
        raise ValidationError(errors)


def _coerce(activity: Activity | dict) -> Activity:
    if isinstance(activity, dict):
        return activity_from_dict(activity)
    # Re-dispatch so a bare Activity with a bad type is rejected the same way.
    if type(activity) is Activity:
        return activity_from_dict(activity.to_dict())
    return activity


class ActivityStore:
    """Timeline records (notes, interactions, reminders) per user."""

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock

    async def create(self, user_id: str, activity: Activity | dict) -> Activity:
        user_id = require_user(user_id)
        activity = _coerce(activity)
        activity = dataclasses.replace(activity, user_id=user_id, is_archived=False)
        if isinstance(activity, InteractionActivity) and activity.date is None:
            activity = dataclasses.replace(activity, date=self._clock())
        if isinstance(activity, ReminderActivity) and activity.reminder_date is None:
            activity = dataclasses.replace(activity, reminder_date=self._clock())
        _check_variant(activity)
        doc = await self.store.create(COLLECTION, activity.to_dict())
        logger.info("Created %s activity %s", activity.type, doc["id"])
        return activity_from_dict(doc)

    async def get(self, user_id: str, activity_id: str) -> Activity:
        user_id = require_user(user_id)
        doc = await self.store.get(COLLECTION, activity_id)
        return activity_from_dict(check_owner(doc, user_id, "activity"))

    async def list(self, user_id: str, include_archived: bool = False) -> list[Activity]:
        user_id = require_user(user_id)
        filters: dict = {"userId": user_id}
        if not include_archived:
            filters["isArchived"] = False
        docs = await self.store.query(COLLECTION, filters, order_by="createdAt", descending=True)
        return [activity_from_dict(d) for d in docs]

    async def list_by_type(self, user_id: str, activity_type: str) -> list[Activity]:
        return [a for a in await self.list(user_id) if a.type == activity_type]

    async def list_for_contact(
        self, user_id: str, contact_name: str, include_archived: bool = True
    ) -> list[Activity]:
        """Activities whose contact name matches after normalization.

        contactId is not a key here: a forked relationship keeps the device
        contact of the one it was forked from.
        """
        key = normalize_name(contact_name)
        if not key:
            return []
        return [
            a for a in await self.list(user_id, include_archived=include_archived)
            if normalize_name(a.contact_name) == key
        ]

    async def get_by_reminder_id(self, user_id: str, reminder_id: str) -> ReminderActivity | None:
        user_id = require_user(user_id)
        if not reminder_id:
            return None
        docs = await self.store.query(
            COLLECTION, {"userId": user_id, "reminderId": reminder_id, "isArchived": False}
        )
        return activity_from_dict(docs[0]) if docs else None

    async def update(self, user_id: str, activity_id: str, **changes) -> Activity:
        current = await self.get(user_id, activity_id)
        if "type" in changes and changes["type"] != current.type:
            raise ValidationError({"type": "Activity type cannot be changed"})
        changes.pop("type", None)
        unknown = set(changes) - (field_names(type(current)) - _READ_ONLY)
        if unknown:
            raise ValidationError({name: "Field cannot be updated" for name in sorted(unknown)})
        updated = dataclasses.replace(current, **changes)
        _check_variant(updated)
        doc = await self.store.update(COLLECTION, activity_id, updated.to_dict())
        return activity_from_dict(check_owner(doc, current.user_id, "activity"))

    async def archive(self, user_id: str, activity_id: str) -> Activity:
        return await self.update(user_id, activity_id, is_archived=True)

    async def complete_reminder(self, user_id: str, activity_id: str) -> Activity:
        current = await self.get(user_id, activity_id)
        if not isinstance(current, ReminderActivity):
            raise ValidationError({"type": "Only reminder activities can be completed"})
        return await self.update(user_id, activity_id, is_completed=True, completed_at=self._clock())

    async def delete(self, user_id: str, activity_id: str) -> bool:
        await self.get(user_id, activity_id)
        return await self.store.delete(COLLECTION, activity_id)

    async def stats(self, user_id: str) -> dict[str, int]:
        activities = await self.list(user_id)
        reminders = [a for a in activities if isinstance(a, ReminderActivity)]
        week_ago = self._clock() - timedelta(days=7)
        return {
            "totalActivities": len(activities),
            "notesCount": sum(1 for a in activities if a.type == "note"),
            "interactionsCount": sum(1 for a in activities if a.type == "interaction"),
            "remindersCount": len(reminders),
            "completedReminders": sum(1 for a in reminders if a.is_completed),
            "pendingReminders": sum(1 for a in reminders if not a.is_completed),
            "recentActivities": sum(1 for a in activities if a.created_at and a.created_at >= week_ago),
        }

    async def search(self, user_id: str, query: str) -> list[Activity]:
        needle = query.strip().lower()

        def matches(a: Activity) -> bool:
            texts = [a.description, a.contact_name, *a.tags, getattr(a, "content", "")]
            return any(needle in (t or "").lower() for t in texts)

        return [a for a in await self.list(user_id) if matches(a)]

    async def list_by_tags(self, user_id: str, tags: list[str]) -> list[Activity]:
        wanted = set(tags)
        return [a for a in await self.list(user_id) if wanted.intersection(a.tags)]

    async def all_tags(self, user_id: str) -> list[str]:
        tags: dict[str, None] = {}
        for a in await self.list(user_id):
            tags.update(dict.fromkeys(a.tags))
        return list(tags)

    def subscribe(self, user_id: str, callback: Callable[[list[Activity]], None]) -> Callable[[], None]:
        user_id = require_user(user_id)
        return self.store.subscribe(
            COLLECTION,
            {"userId": user_id, "isArchived": False},
            lambda docs: callback([activity_from_dict(d) for d in docs]),
            order_by="createdAt",
            descending=True,
        )
