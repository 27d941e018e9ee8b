from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import Callable

from touchbase.auth import require_user
from touchbase.errors import RelationshipConflict, ValidationError
from touchbase.models import DeviceContact, Relationship, normalize_name, utc_now
from touchbase.services.contacts import contact_data_from
from touchbase.services.relationships import RelationshipStore

logger = logging.getLogger(__name__)

EDIT_EXISTING = "edit"
FORK = "fork"
RESOLUTIONS = (EDIT_EXISTING, FORK)


def fork_name(name: str, now: datetime) -> str:
    """Disambiguated name for a second relationship with the same person name."""
    return f"{name.strip()} ({now.year})"


def default_relationship(
    name: str, source_contact: DeviceContact | None = None, now: datetime | None = None
) -> Relationship:
    """A fresh relationship: contacted now, monthly cadence, no tags.

    nextReminderDate is one calendar month after now (the store derives it
    from lastContactDate), not a flat 30 days.
    """
    now = now or utc_now()
    return Relationship(
        contact_id=source_contact.id if source_contact else "",
        contact_name=name.strip(),
        last_contact_date=now,
        last_contact_method="other",
        reminder_frequency="month",
        tags=[],
        contact_data=contact_data_from(source_contact),
    )


class RelationshipReconciler:
    """Makes sure a Relationship exists before anything is recorded about a contact.

    Concurrent requests for the same user and normalized name share one
    in-flight creation, so they all resolve to the same record.
    """

    def __init__(self, relationships: RelationshipStore, clock: Callable[[], datetime] = utc_now):
        self.relationships = relationships
        self._clock = clock
        self._inflight: dict[tuple[str, str], asyncio.Future] = {}

    async def ensure_relationship_exists(
        self, user_id: str, name: str, source_contact: DeviceContact | None = None
    ) -> Relationship | None:
        """Return the relationship for ``name``, creating it if needed.

        Never raises: failures are logged and reported as None so the caller's
        primary operation can still go ahead.
        """
        key = (user_id or "", normalize_name(name))
        if not key[1]:
            logger.warning("Refusing to create a relationship without a contact name")
            return None
        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._ensure(user_id, name, source_contact))
        self._inflight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    async def _ensure(
        self, user_id: str, name: str, source_contact: DeviceContact | None
    ) -> Relationship | None:
        try:
            existing = await self.relationships.find_by_name(user_id, name)
            if existing is not None:
                return existing
            draft = default_relationship(name, source_contact, self._clock())
            return await self.relationships.create(user_id, draft)
        except Exception:
            logger.exception("Could not ensure a relationship exists for %r", name)
            return None

    async def find_collision(self, user_id: str, name: str) -> Relationship | None:
        return await self.relationships.find_by_name(user_id, name)

    async def create_relationship(
        self, user_id: str, relationship: Relationship, on_conflict: str | None = None
    ) -> Relationship:
        """Explicit "add relationship" flow.

        When the name already belongs to a relationship and no resolution is
        given, raise RelationshipConflict so the user can choose. With
        ``on_conflict="edit"`` the existing relationship is returned untouched
        for editing; with ``"fork"`` a new one is created under
        ``"<name> (<year>)"``. The choice is applied once and not retried.
        """
        require_user(user_id)
        if on_conflict is not None and on_conflict not in RESOLUTIONS:
            raise ValidationError({"onConflict": f"Must be one of {', '.join(RESOLUTIONS)}"})
        existing = await self.find_collision(user_id, relationship.contact_name)
        if existing is None:
            return await self.relationships.create(user_id, relationship)

        alternative = fork_name(relationship.contact_name, self._clock())
        if on_conflict is None:
            raise RelationshipConflict(existing, alternative)
        if on_conflict == EDIT_EXISTING:
            return existing
        logger.info("Forking relationship %r as %r", existing.contact_name, alternative)
        return await self.relationships.create(
            user_id, dataclasses.replace(relationship, contact_name=alternative)
        )
