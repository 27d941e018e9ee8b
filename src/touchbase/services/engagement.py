"""Cross-entity flows over relationships, activities and reminders.

A reminder-type Activity and its Reminder are two documents written without a
transaction. The flows here keep them in lockstep: the Reminder is written
first, the Activity second, and a failed Activity write deletes the Reminder
again. Secondary effects (relationship auto-creation, notifications) never
fail the primary write; they surface as warnings on the returned Outcome.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable

from touchbase.auth import require_user
from touchbase.errors import NotFoundOrAccessDenied, Outcome, StoreError, ValidationError
from touchbase.models import (
    Activity,
    DeviceContact,
    InteractionActivity,
    Relationship,
    Reminder,
    ReminderActivity,
    activity_from_dict,
    normalize_name,
    utc_now,
)
from touchbase.services.activities import ActivityStore
from touchbase.services.frequency import NON_RECURRING, next_reminder_date
from touchbase.services.reconciler import RelationshipReconciler
from touchbase.services.relationships import RelationshipStore
from touchbase.services.reminders import ReminderStore
from touchbase.services.scheduler import ReminderScheduler, reminder_message
from touchbase.services.validation import (
    validate_activity_form,
    validate_interaction_date,
    validate_reminder_date,
)

logger = logging.getLogger(__name__)

# Activity fields mirrored onto the paired Reminder document.
_MIRRORED = {
    "reminder_date": "date",
    "reminder_type": "type",
    "frequency": "frequency",
    "contact_name": "contact_name",
    "contact_id": "contact_id",
    "tags": "tags",
    "description": "notes",
}


class EngagementService:
    def __init__(
        self,
        relationships: RelationshipStore,
        activities: ActivityStore,
        reminders: ReminderStore,
        reconciler: RelationshipReconciler,
        scheduler: ReminderScheduler,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.relationships = relationships
        self.activities = activities
        self.reminders = reminders
        self.reconciler = reconciler
        self.scheduler = scheduler
        self._clock = clock

    # -- notifications (best effort) -------------------------------------------------

    async def _schedule(self, reminder: Reminder, lead_minutes, warnings: list[str]) -> None:
        try:
            await self.scheduler.schedule_for_reminder(
                reminder.id, reminder.date, lead_minutes, reminder_message(reminder)
            )
        except Exception:
            logger.exception("Scheduling notifications for reminder %s failed", reminder.id)
            warnings.append("Reminder saved, but its notifications could not be scheduled")

    async def _reschedule(self, reminder: Reminder, lead_minutes, warnings: list[str]) -> None:
        try:
            await self.scheduler.reschedule_for_reminder(
                reminder.id, reminder.date, lead_minutes, reminder_message(reminder)
            )
        except Exception:
            logger.exception("Rescheduling notifications for reminder %s failed", reminder.id)
            warnings.append("Reminder saved, but its notifications could not be rescheduled")

    async def _cancel(self, reminder_id: str, warnings: list[str]) -> None:
        try:
            await self.scheduler.cancel_for_reminder(reminder_id)
        except Exception:
            logger.exception("Cancelling notifications for reminder %s failed", reminder_id)
            warnings.append("Notifications for a deleted reminder could not be cancelled")

    # -- recording -------------------------------------------------------------------

    async def record_activity(
        self,
        user_id: str,
        activity: Activity | dict,
        source_contact: DeviceContact | None = None,
        lead_minutes: Iterable[int] | None = None,
    ) -> Outcome[Activity]:
        """Record a note, interaction or reminder for a contact.

        The contact's Relationship is created on demand. Reminders go through
        the two-step write described in the module docstring.
        """
        user_id = require_user(user_id)
        if isinstance(activity, dict):
            activity = activity_from_dict(activity)
        errors = validate_activity_form(activity.to_dict(), self._clock())
        if errors:
            raise ValidationError(errors)

        warnings: list[str] = []
        relationship = None
        if activity.contact_name.strip():
            relationship = await self.reconciler.ensure_relationship_exists(
                user_id, activity.contact_name, source_contact
            )
            if relationship is None:
                warnings.append(f"Could not create a relationship for {activity.contact_name}")
            elif not activity.contact_id and relationship.contact_id:
                activity = dataclasses.replace(activity, contact_id=relationship.contact_id)

        if isinstance(activity, ReminderActivity):
            created = await self._record_reminder(user_id, activity, relationship, lead_minutes, warnings)
        else:
            created = await self.activities.create(user_id, activity)

        if isinstance(created, InteractionActivity) and relationship is not None:
            await self._touch_last_contact(user_id, relationship, created, warnings)
        return Outcome(created, warnings)

    async def _record_reminder(
        self,
        user_id: str,
        activity: ReminderActivity,
        relationship: Relationship | None,
        lead_minutes,
        warnings: list[str],
    ) -> ReminderActivity:
        reminder = await self.reminders.create(
            user_id,
            Reminder(
                contact_name=activity.contact_name.strip(),
                contact_id=activity.contact_id,
                relationship_id=relationship.id if relationship else "",
                type=activity.reminder_type,
                date=activity.reminder_date,
                frequency=activity.frequency,
                tags=list(activity.tags),
                notes=activity.description,
            ),
        )
        await self._schedule(reminder, lead_minutes, warnings)
        try:
            return await self.activities.create(
                user_id, dataclasses.replace(activity, reminder_id=reminder.id)
            )
        except Exception:
            logger.exception("Activity write failed, removing reminder %s", reminder.id)
            await self._compensate(user_id, reminder.id)
            raise

    async def _compensate(self, user_id: str, reminder_id: str) -> None:
        try:
            await self.scheduler.cancel_for_reminder(reminder_id)
        except Exception:
            logger.exception("Could not cancel notifications for orphaned reminder %s", reminder_id)
        try:
            await self.reminders.delete(user_id, reminder_id)
        except Exception:
            logger.exception("Compensating delete of reminder %s failed; it is now orphaned", reminder_id)

    async def _touch_last_contact(
        self, user_id: str, relationship: Relationship, interaction: InteractionActivity, warnings: list[str]
    ) -> None:
        when = interaction.date
        if when is None or (relationship.last_contact_date and when <= relationship.last_contact_date):
            return
        try:
            await self.relationships.update_last_contact(
                user_id, relationship.id, when, interaction.interaction_type
            )
        except Exception:
            logger.exception("Could not update last contact for relationship %s", relationship.id)
            warnings.append(f"Could not update last contact date for {relationship.contact_name}")

    # -- editing ---------------------------------------------------------------------

    async def update_activity(
        self, user_id: str, activity_id: str, lead_minutes: Iterable[int] | None = None, **changes
    ) -> Outcome[Activity]:
        """Update an activity; reminder activities carry the change to their Reminder."""
        current = await self.activities.get(user_id, activity_id)
        now = self._clock()
        if isinstance(current, ReminderActivity) and changes.get("reminder_date") is not None:
            if not validate_reminder_date(changes["reminder_date"], now):
                raise ValidationError({"reminderDate": "Reminder date must be in the future"})
        if isinstance(current, InteractionActivity) and changes.get("date") is not None:
            if not validate_interaction_date(changes["date"], now):
                raise ValidationError({"date": "Interaction date must be in the past"})

        updated = await self.activities.update(user_id, activity_id, **changes)
        warnings: list[str] = []
        # None leaves the reminder's relationship link untouched.
        relationship_id = None
        if normalize_name(updated.contact_name) != normalize_name(current.contact_name):
            relationship = None
            if updated.contact_name.strip():
                relationship = await self.reconciler.ensure_relationship_exists(user_id, updated.contact_name)
                if relationship is None:
                    warnings.append(f"Could not create a relationship for {updated.contact_name}")
            relationship_id = relationship.id if relationship else ""
        if isinstance(updated, ReminderActivity):
            await self._sync_reminder(user_id, updated, changes, relationship_id, lead_minutes, warnings)
        return Outcome(updated, warnings)

    async def _sync_reminder(
        self,
        user_id: str,
        activity: ReminderActivity,
        changes: dict,
        relationship_id: str | None,
        lead_minutes,
        warnings: list[str],
    ) -> None:
        if not activity.reminder_id:
            logger.warning("Reminder activity %s has no reminderId; reminder not updated", activity.id)
            warnings.append("Activity updated, but it is not linked to a reminder")
            return
        mirrored = {_MIRRORED[k]: v for k, v in changes.items() if k in _MIRRORED}
        if relationship_id is not None:
            mirrored["relationship_id"] = relationship_id
        if not mirrored:
            return
        try:
            reminder = await self.reminders.update(user_id, activity.reminder_id, **mirrored)
        except NotFoundOrAccessDenied:
            logger.warning("Reminder %s for activity %s is gone", activity.reminder_id, activity.id)
            warnings.append("Activity updated, but its reminder no longer exists")
            return
        except Exception:
            logger.exception("Updating reminder %s failed", activity.reminder_id)
            warnings.append("Activity updated, but its reminder could not be updated")
            return
        if {"date", "notes", "contact_name", "type"} & set(mirrored):
            await self._reschedule(reminder, lead_minutes, warnings)

    async def archive_activity(self, user_id: str, activity_id: str) -> Outcome[Activity]:
        return Outcome(await self.activities.archive(user_id, activity_id))

    async def delete_activity(self, user_id: str, activity_id: str) -> Outcome[bool]:
        """Delete an activity, and its Reminder when it is a reminder activity."""
        current = await self.activities.get(user_id, activity_id)
        deleted = await self.activities.delete(user_id, activity_id)
        warnings: list[str] = []
        if isinstance(current, ReminderActivity) and current.reminder_id:
            await self._cancel(current.reminder_id, warnings)
            try:
                await self.reminders.delete(user_id, current.reminder_id)
            except NotFoundOrAccessDenied:
                logger.info("Reminder %s was already gone", current.reminder_id)
            except Exception:
                logger.exception("Deleting reminder %s failed", current.reminder_id)
                warnings.append("Activity deleted, but its reminder could not be deleted")
        return Outcome(deleted, warnings)

    # -- reminder lifecycle ----------------------------------------------------------

    async def _move_reminder(
        self, user_id: str, reminder: Reminder, new_date: datetime, lead_minutes, warnings: list[str]
    ) -> Reminder:
        moved = await self.reminders.update(user_id, reminder.id, date=new_date)
        await self._reschedule(moved, lead_minutes, warnings)
        paired = await self.activities.get_by_reminder_id(user_id, reminder.id)
        if paired is None:
            warnings.append("Reminder moved, but no activity is linked to it")
        else:
            try:
                await self.activities.update(user_id, paired.id, reminder_date=new_date)
            except Exception:
                logger.exception("Updating activity %s for reminder %s failed", paired.id, reminder.id)
                warnings.append("Reminder moved, but its activity could not be updated")
        return moved

    async def mark_reminder_done(
        self, user_id: str, reminder_id: str, lead_minutes: Iterable[int] | None = None
    ) -> Outcome[Reminder | None]:
        """Complete a reminder.

        A completion activity is always recorded. Non-recurring reminders are
        deleted; recurring ones move to their next due date. Returns the
        rescheduled Reminder, or None when it was deleted.
        """
        reminder = await self.reminders.get(user_id, reminder_id)
        now = self._clock()
        warnings: list[str] = []
        try:
            await self.activities.create(
                user_id,
                ReminderActivity(
                    description=f"Completed reminder: {reminder.type}"
                    + (f" - {reminder.notes}" if reminder.notes else ""),
                    tags=["completed", "reminder"],
                    contact_id=reminder.contact_id,
                    contact_name=reminder.contact_name,
                    reminder_date=reminder.date,
                    reminder_type=reminder.type,
                    frequency=reminder.frequency,
                    is_completed=True,
                    completed_at=now,
                ),
            )
        except Exception:
            logger.exception("Could not record completion of reminder %s", reminder_id)
            warnings.append("Reminder completed, but the completion was not logged")

        if reminder.frequency in NON_RECURRING:
            paired = await self.activities.get_by_reminder_id(user_id, reminder_id)
            if paired is not None:
                await self.activities.complete_reminder(user_id, paired.id)
            await self._cancel(reminder_id, warnings)
            await self.reminders.delete(user_id, reminder_id)
            return Outcome(None, warnings)

        # Skip occurrences that are already in the past.
        next_date = next_reminder_date(reminder.date, reminder.frequency)
        while next_date <= now:
            next_date = next_reminder_date(next_date, reminder.frequency)
        moved = await self._move_reminder(user_id, reminder, next_date, lead_minutes, warnings)
        return Outcome(moved, warnings)

    async def snooze_reminder(
        self, user_id: str, reminder_id: str, days: int, lead_minutes: Iterable[int] | None = None
    ) -> Outcome[Reminder]:
        if days < 1:
            raise ValidationError({"days": "Snooze must be at least one day"})
        reminder = await self.reminders.get(user_id, reminder_id)
        warnings: list[str] = []
        new_date = reminder.date + timedelta(days=days)
        moved = await self._move_reminder(user_id, reminder, new_date, lead_minutes, warnings)
        return Outcome(moved, warnings)

    async def delete_reminder(self, user_id: str, reminder_id: str) -> Outcome[bool]:
        """Delete a reminder together with its paired activity."""
        paired = await self.activities.get_by_reminder_id(user_id, reminder_id)
        if paired is not None:
            return await self.delete_activity(user_id, paired.id)
        warnings: list[str] = []
        await self.reminders.get(user_id, reminder_id)
        await self._cancel(reminder_id, warnings)
        return Outcome(await self.reminders.delete(user_id, reminder_id), warnings)

    async def reschedule_all_notifications(
        self, user_id: str, lead_minutes: Iterable[int] | None = None
    ) -> int:
        return await self.scheduler.reschedule_all(await self.reminders.list(user_id), lead_minutes)

    # -- relationships ---------------------------------------------------------------

    async def delete_relationship(self, user_id: str, relationship_id: str) -> Outcome[int]:
        """Delete a relationship and everything recorded about it.

        Children are deleted concurrently and independently; one failure
        leaves that child behind but does not stop the others or the
        relationship itself, which is deleted last. Returns how many children
        were removed.
        """
        relationship = await self.relationships.get(user_id, relationship_id)
        activities = await self.activities.list_for_contact(user_id, relationship.contact_name)
        reminders = await self.reminders.list_for_relationship(
            user_id, relationship_id, relationship.contact_name
        )

        async def drop_reminder(reminder_id: str) -> bool:
            try:
                await self.scheduler.cancel_for_reminder(reminder_id)
            except Exception:
                logger.exception("Cancelling notifications for reminder %s failed", reminder_id)
            return await self.reminders.delete(user_id, reminder_id)

        jobs = [self.activities.delete(user_id, a.id) for a in activities]
        jobs += [drop_reminder(r.id) for r in reminders]
        labels = [f"activity {a.id}" for a in activities] + [f"reminder {r.id}" for r in reminders]
        results = await asyncio.gather(*jobs, return_exceptions=True)

        warnings: list[str] = []
        removed = 0
        for label, result in zip(labels, results):
            if isinstance(result, BaseException):
                logger.error("Cascade delete of %s failed: %s", label, result)
                warnings.append(f"Could not delete {label}")
            elif result:
                removed += 1

        try:
            await self.relationships.delete(user_id, relationship_id)
        except NotFoundOrAccessDenied:
            raise
        except Exception as exc:
            raise StoreError(f"Could not delete relationship {relationship_id}") from exc
        logger.info(
            "Deleted relationship %s with %d of %d children", relationship_id, removed, len(labels)
        )
        return Outcome(removed, warnings)
