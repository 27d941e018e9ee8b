from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Callable

from touchbase.auth import check_owner, require_user
from touchbase.db import DocumentStore
from touchbase.errors import ValidationError
from touchbase.models import (
    REMINDER_FREQUENCIES,
    REMINDER_TABS,
    Reminder,
    field_names,
    normalize_name,
    utc_now,
)
from touchbase.services.frequency import is_overdue, is_this_week

logger = logging.getLogger(__name__)

COLLECTION = "reminders"

_READ_ONLY = {"id", "user_id", "created_at", "updated_at", "is_overdue", "is_this_week"}


class ReminderStore:
    """Standalone follow-up reminders; isOverdue/isThisWeek are refreshed on every read."""

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock

    def _with_flags(self, reminder: Reminder) -> Reminder:
        if reminder.date is None:
            return reminder
        now = self._clock()
        return dataclasses.replace(
            reminder,
            is_overdue=is_overdue(reminder.date, now),
            is_this_week=is_this_week(reminder.date, now),
        )

    def _load(self, doc: dict) -> Reminder:
        return self._with_flags(Reminder.from_dict(doc))

    @staticmethod
    def _check(reminder: Reminder) -> None:
        errors = {}
        if not reminder.contact_name.strip():
            errors["contactName"] = "Contact name is required for reminders"
        if reminder.date is None:
            errors["date"] = "Reminder date is required"
        if reminder.frequency not in REMINDER_FREQUENCIES:
            errors["frequency"] = f"Unknown frequency {reminder.frequency!r}"
        if errors:
            raise ValidationError(errors)

    async def create(self, user_id: str, reminder: Reminder) -> Reminder:
        user_id = require_user(user_id)
        self._check(reminder)
        reminder = self._with_flags(dataclasses.replace(reminder, user_id=user_id))
        doc = await self.store.create(COLLECTION, reminder.to_dict())
        logger.info("Created reminder %s for %r due %s", doc["id"], reminder.contact_name, reminder.date)
        return self._load(doc)

    async def get(self, user_id: str, reminder_id: str) -> Reminder:
        user_id = require_user(user_id)
        doc = await self.store.get(COLLECTION, reminder_id)
        return self._load(check_owner(doc, user_id, "reminder"))

    async def list(self, user_id: str) -> list[Reminder]:
        user_id = require_user(user_id)
        docs = await self.store.query(COLLECTION, {"userId": user_id}, order_by="date")
        return [self._load(d) for d in docs]

    async def update(self, user_id: str, reminder_id: str, **changes) -> Reminder:
        unknown = set(changes) - (field_names(Reminder) - _READ_ONLY)
        if unknown:
            raise ValidationError({name: "Field cannot be updated" for name in sorted(unknown)})
        current = await self.get(user_id, reminder_id)
        updated = self._with_flags(dataclasses.replace(current, **changes))
        self._check(updated)
        doc = await self.store.update(COLLECTION, reminder_id, updated.to_dict())
        return self._load(check_owner(doc, current.user_id, "reminder"))

    async def delete(self, user_id: str, reminder_id: str) -> bool:
        await self.get(user_id, reminder_id)
        return await self.store.delete(COLLECTION, reminder_id)

    async def list_for_relationship(
        self, user_id: str, relationship_id: str, contact_name: str = ""
    ) -> list[Reminder]:
        key = normalize_name(contact_name)
        return [
            r for r in await self.list(user_id)
            if r.relationship_id == relationship_id or (key and normalize_name(r.contact_name) == key)
        ]

    async def list_by_tab(self, user_id: str, tab: str) -> list[Reminder]:
        if tab not in REMINDER_TABS:
            raise ValidationError({"tab": f"Tab must be one of {', '.join(REMINDER_TABS)}"})
        reminders = await self.list(user_id)
        if tab == "missed":
            return [r for r in reminders if r.is_overdue]
        if tab == "thisWeek":
            return [r for r in reminders if r.is_this_week and not r.is_overdue]
        if tab == "upcoming":
            return [r for r in reminders if not r.is_this_week and not r.is_overdue]
        return reminders

    async def list_by_filter(self, user_id: str, tag: str) -> list[Reminder]:
        reminders = await self.list(user_id)
        if tag == "all":
            return reminders
        return [r for r in reminders if any(t.lower() == tag.lower() for t in r.tags)]

    async def search(self, user_id: str, query: str) -> list[Reminder]:
        needle = query.strip().lower()
        return [
            r for r in await self.list(user_id)
            if needle in r.contact_name.lower()
            or needle in r.type.lower()
            or any(needle in t.lower() for t in r.tags)
        ]

    async def due_today(self, user_id: str) -> list[Reminder]:
        start = self._clock().replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        return [r for r in await self.list(user_id) if r.date and start <= r.date < end]

    async def count(self, user_id: str) -> int:
        return len(await self.list(user_id))

    async def all_tags(self, user_id: str) -> list[str]:
        tags: dict[str, None] = {}
        for r in await self.list(user_id):
            tags.update(dict.fromkeys(r.tags))
        return list(tags)

    def subscribe(self, user_id: str, callback: Callable[[list[Reminder]], None]) -> Callable[[], None]:
        user_id = require_user(user_id)
        return self.store.subscribe(
            COLLECTION,
            {"userId": user_id},
            lambda docs: callback([self._load(d) for d in docs]),
            order_by="date",
        )
