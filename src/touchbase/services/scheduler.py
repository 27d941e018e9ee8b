from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Protocol

from touchbase.config import DEFAULT_LEAD_MINUTES
from touchbase.errors import ValidationError
from touchbase.models import Reminder, utc_now

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def schedule(self, due_date: datetime, lead_minutes: list[int], message: str = "") -> list[str]:
        ...

    async def cancel(self, handles: list[str]) -> None:
        ...


@dataclass
class ScheduledNotification:
    handle: str
    fire_at: datetime
    due_date: datetime
    lead_minutes: int
    message: str = ""


class LocalNotificationDispatcher:
    """In-process dispatcher that keeps pending notifications in memory.

    Offsets whose fire time has already passed are skipped.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._pending: dict[str, ScheduledNotification] = {}

    async def schedule(self, due_date: datetime, lead_minutes: list[int], message: str = "") -> list[str]:
        now = self._clock()
        handles = []
        for minutes in lead_minutes:
            fire_at = due_date - timedelta(minutes=minutes)
            if fire_at <= now:
                logger.debug("Skipping %s minute notification, fire time already passed", minutes)
                continue
            handle = f"{uuid.uuid4().hex}_{minutes}m"
            self._pending[handle] = ScheduledNotification(handle, fire_at, due_date, minutes, message)
            handles.append(handle)
        return handles

    async def cancel(self, handles: list[str]) -> None:
        for handle in handles:
            self._pending.pop(handle, None)

    def pending(self) -> list[ScheduledNotification]:
        return sorted(self._pending.values(), key=lambda n: n.fire_at)

    def get(self, handle: str) -> ScheduledNotification | None:
        return self._pending.get(handle)

    def pop_due(self, now: datetime | None = None) -> list[ScheduledNotification]:
        """Remove and return every notification whose fire time has come."""
        now = now or self._clock()
        due = [n for n in self._pending.values() if n.fire_at <= now]
        for n in due:
            del self._pending[n.handle]
        return sorted(due, key=lambda n: n.fire_at)


def reminder_message(reminder: Reminder) -> str:
    return reminder.notes or f"Don't forget to follow up with {reminder.contact_name}"


class ReminderScheduler:
    """Keeps the notifications issued for each reminder and replaces them on edit.

    Dispatcher errors propagate; callers decide whether scheduling is
    best-effort.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        lead_minutes: Iterable[int] = DEFAULT_LEAD_MINUTES,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.dispatcher = dispatcher
        self.lead_minutes = list(lead_minutes)
        self._clock = clock
        self._handles: dict[str, list[str]] = {}

    def handles_for(self, reminder_id: str) -> list[str]:
        return list(self._handles.get(reminder_id, []))

    async def schedule_for_reminder(
        self,
        reminder_id: str,
        due_date: datetime,
        lead_minutes: Iterable[int] | None = None,
        message: str = "",
    ) -> list[str]:
        if due_date <= self._clock():
            raise ValidationError({"date": "Reminder date must be in the future"})
        offsets = list(self.lead_minutes if lead_minutes is None else lead_minutes)
        handles = await self.dispatcher.schedule(due_date, offsets, message)
        self._handles.setdefault(reminder_id, []).extend(handles)
        logger.info("Scheduled %d notifications for reminder %s", len(handles), reminder_id)
        return handles

    async def reschedule_for_reminder(
        self,
        reminder_id: str,
        new_due_date: datetime,
        lead_minutes: Iterable[int] | None = None,
        message: str = "",
    ) -> list[str]:
        await self.cancel_for_reminder(reminder_id)
        if new_due_date <= self._clock():
            logger.info("Reminder %s is no longer in the future, not rescheduling", reminder_id)
            return []
        return await self.schedule_for_reminder(reminder_id, new_due_date, lead_minutes, message)

    async def cancel_for_reminder(self, reminder_id: str) -> None:
        handles = self._handles.get(reminder_id)
        if not handles:
            return
        await self.dispatcher.cancel(list(handles))
        # Forget the handles only once the dispatcher has accepted the cancel.
        self._handles.pop(reminder_id, None)

    async def reschedule_all(self, reminders: Iterable[Reminder], lead_minutes: Iterable[int] | None = None) -> int:
        """Rebuild notifications for every future reminder; returns how many were scheduled."""
        scheduled = 0
        now = self._clock()
        for reminder in reminders:
            try:
                await self.cancel_for_reminder(reminder.id)
                if reminder.date and reminder.date > now:
                    await self.schedule_for_reminder(
                        reminder.id, reminder.date, lead_minutes, reminder_message(reminder)
                    )
                    scheduled += 1
            except Exception:
                logger.exception("Failed to reschedule notifications for reminder %s", reminder.id)
        return scheduled
