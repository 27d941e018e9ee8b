from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Callable

from touchbase.auth import check_owner, require_user
from touchbase.db import DocumentStore
from touchbase.errors import ValidationError
from touchbase.models import (
    CONTACT_METHODS,
    RELATIONSHIP_FREQUENCIES,
    Relationship,
    field_names,
    normalize_name,
    utc_now,
)
from touchbase.services.frequency import next_reminder_date

logger = logging.getLogger(__name__)

COLLECTION = "relationships"

# Fields callers may change through update(); the rest are owned by the store.
_READ_ONLY = {"id", "user_id", "created_at", "updated_at", "next_reminder_date"}


def _check_cadence(relationship: Relationship) -> None:
    errors = {}
    if relationship.reminder_frequency not in RELATIONSHIP_FREQUENCIES:
        errors["reminderFrequency"] = f"Unknown frequency {relationship.reminder_frequency!r}"
    if relationship.last_contact_method not in CONTACT_METHODS:
        errors["lastContactMethod"] = f"Unknown contact method {relationship.last_contact_method!r}"
    if not normalize_name(relationship.contact_name):
        errors["contactName"] = "Contact name is required"
    if errors:
        raise ValidationError(errors)


def with_next_reminder(relationship: Relationship) -> Relationship:
    """Recompute nextReminderDate from lastContactDate and the cadence."""
    if relationship.last_contact_date is None:
        return dataclasses.replace(relationship, next_reminder_date=None)
    return dataclasses.replace(
        relationship,
        next_reminder_date=next_reminder_date(relationship.last_contact_date, relationship.reminder_frequency),
    )


class RelationshipStore:
    """CRUD over Relationship documents, scoped to one user per call."""

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock

    async def create(self, user_id: str, relationship: Relationship) -> Relationship:
        user_id = require_user(user_id)
        relationship = dataclasses.replace(
            relationship,
            user_id=user_id,
            contact_name=relationship.contact_name.strip(),
            last_contact_date=relationship.last_contact_date or self._clock(),
        )
        _check_cadence(relationship)
        relationship = with_next_reminder(relationship)
        doc = await self.store.create(COLLECTION, relationship.to_dict())
        logger.info("Created relationship %s for %r", doc["id"], relationship.contact_name)
        return Relationship.from_dict(doc)

    async def get(self, user_id: str, relationship_id: str) -> Relationship:
        user_id = require_user(user_id)
        doc = await self.store.get(COLLECTION, relationship_id)
        return Relationship.from_dict(check_owner(doc, user_id, "relationship"))

    async def list(self, user_id: str) -> list[Relationship]:
        user_id = require_user(user_id)
        docs = await self.store.query(COLLECTION, {"userId": user_id}, order_by="contactName")
        return [Relationship.from_dict(d) for d in docs]

    async def get_by_contact_id(self, user_id: str, contact_id: str) -> Relationship | None:
        user_id = require_user(user_id)
        if not contact_id:
            return None
        docs = await self.store.query(COLLECTION, {"userId": user_id, "contactId": contact_id})
        return Relationship.from_dict(docs[0]) if docs else None

    async def find_by_name(self, user_id: str, name: str) -> Relationship | None:
        """First relationship whose trimmed, case-folded name matches ``name``."""
        key = normalize_name(name)
        if not key:
            return None
        for relationship in await self.list(user_id):
            if normalize_name(relationship.contact_name) == key:
                return relationship
        return None

    async def update(self, user_id: str, relationship_id: str, **changes) -> Relationship:
        unknown = set(changes) - (field_names(Relationship) - _READ_ONLY)
        if unknown:
            raise ValidationError({name: "Field cannot be updated" for name in sorted(unknown)})
        current = await self.get(user_id, relationship_id)
        updated = dataclasses.replace(current, **changes)
        _check_cadence(updated)
        if {"last_contact_date", "reminder_frequency"} & set(changes):
            updated = with_next_reminder(updated)
        doc = await self.store.update(COLLECTION, relationship_id, updated.to_dict())
        return Relationship.from_dict(check_owner(doc, current.user_id, "relationship"))

    async def update_last_contact(
        self, user_id: str, relationship_id: str, when: datetime, method: str
    ) -> Relationship:
        return await self.update(user_id, relationship_id, last_contact_date=when, last_contact_method=method)

    async def delete(self, user_id: str, relationship_id: str) -> bool:
        await self.get(user_id, relationship_id)
        return await self.store.delete(COLLECTION, relationship_id)

    async def search(self, user_id: str, query: str) -> list[Relationship]:
        needle = query.strip().lower()
        if not needle:
            return await self.list(user_id)

        def matches(r: Relationship) -> bool:
            cd = r.contact_data
            haystack = [
                r.contact_name,
                r.notes,
                *r.tags,
                cd.company,
                cd.job_title,
                cd.website,
                cd.linkedin,
                cd.twitter,
                cd.instagram,
                cd.facebook,
                cd.address,
                cd.notes,
                *(e.email for e in cd.emails),
            ]
            if any(needle in (text or "").lower() for text in haystack):
                return True
            return any(needle in p.number for p in cd.phones)

        return [r for r in await self.list(user_id) if matches(r)]

    async def list_by_tag(self, user_id: str, tag: str) -> list[Relationship]:
        return [r for r in await self.list(user_id) if tag in r.tags]

    async def all_tags(self, user_id: str) -> list[str]:
        tags: dict[str, None] = {}
        for r in await self.list(user_id):
            tags.update(dict.fromkeys(r.tags))
        return list(tags)

    async def count(self, user_id: str) -> int:
        return len(await self.list(user_id))

    async def needing_follow_up(self, user_id: str, now: datetime | None = None) -> list[Relationship]:
        now = now or self._clock()
        return [
            r for r in await self.list(user_id)
            if r.next_reminder_date is not None and r.next_reminder_date <= now
        ]

    def subscribe(self, user_id: str, callback: Callable[[list[Relationship]], None]) -> Callable[[], None]:
        user_id = require_user(user_id)
        return self.store.subscribe(
            COLLECTION,
            {"userId": user_id},
            lambda docs: callback([Relationship.from_dict(d) for d in docs]),
            order_by="contactName",
        )
