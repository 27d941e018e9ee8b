from __future__ import annotations

from datetime import timedelta

import pytest

from touchbase.errors import ValidationError
from touchbase.models import Reminder
from touchbase.services.scheduler import LocalNotificationDispatcher, ReminderScheduler

from conftest import NOW, FlakyDispatcher


@pytest.fixture
def scheduler(dispatcher, clock):
    return ReminderScheduler(dispatcher, (60, 30, 15), clock)


@pytest.mark.asyncio
async def test_schedules_one_notification_per_lead_offset(scheduler, dispatcher):
    due = NOW + timedelta(days=2)
    handles = await scheduler.schedule_for_reminder("r1", due, message="Call Sam")
    assert len(handles) == 3
    assert scheduler.handles_for("r1") == handles
    fire_times = sorted(dispatcher.get(h).fire_at for h in handles)
    assert fire_times == [due - timedelta(minutes=m) for m in (60, 30, 15)]
    assert all(dispatcher.get(h).message == "Call Sam" for h in handles)


@pytest.mark.asyncio
async def test_offsets_already_in_the_past_are_skipped(scheduler, dispatcher):
    due = NOW + timedelta(minutes=20)
    handles = await scheduler.schedule_for_reminder("r1", due)
    assert [dispatcher.get(h).lead_minutes for h in handles] == [15]


@pytest.mark.asyncio
async def test_due_date_must_be_in_the_future(scheduler):
    with pytest.raises(ValidationError):
        await scheduler.schedule_for_reminder("r1", NOW)


@pytest.mark.asyncio
async def test_reschedule_cancels_old_handles_first(scheduler, dispatcher):
    old = await scheduler.schedule_for_reminder("r1", NOW + timedelta(days=1))
    new_due = NOW + timedelta(days=3)
    new = await scheduler.reschedule_for_reminder("r1", new_due, [120, 10])

    assert set(dispatcher.cancelled) == set(old)
    assert all(dispatcher.get(h) is None for h in old)
    assert scheduler.handles_for("r1") == new
    assert sorted(dispatcher.get(h).fire_at for h in new) == [
        new_due - timedelta(minutes=120),
        new_due - timedelta(minutes=10),
    ]


@pytest.mark.asyncio
async def test_reschedule_into_the_past_only_cancels(scheduler, dispatcher):
    await scheduler.schedule_for_reminder("r1", NOW + timedelta(days=1))
    assert await scheduler.reschedule_for_reminder("r1", NOW - timedelta(days=1)) == []
    assert dispatcher.pending() == []


@pytest.mark.asyncio
async def test_failed_cancel_keeps_handles_for_retry(scheduler, dispatcher):
    handles = await scheduler.schedule_for_reminder("r1", NOW + timedelta(days=1))
    dispatcher.fail_cancel = True
    with pytest.raises(RuntimeError):
        await scheduler.cancel_for_reminder("r1")
    assert scheduler.handles_for("r1") == handles


@pytest.mark.asyncio
async def test_reschedule_all_skips_past_and_survives_failures(clock):
    dispatcher = FlakyDispatcher(clock)
    scheduler = ReminderScheduler(dispatcher, (60,), clock)
    reminders = [
        Reminder(id="past", date=NOW - timedelta(days=1)),
        Reminder(id="future", date=NOW + timedelta(days=1)),
        Reminder(id="later", date=NOW + timedelta(days=5)),
    ]
    assert await scheduler.reschedule_all(reminders) == 2

    dispatcher.fail_schedule = True
    assert await scheduler.reschedule_all(reminders) == 0
    assert scheduler.handles_for("future") == []


@pytest.mark.asyncio
async def test_pop_due_returns_fired_notifications(clock):
    dispatcher = LocalNotificationDispatcher(clock)
    due = NOW + timedelta(hours=2)
    await dispatcher.schedule(due, [60, 30])
    fired = dispatcher.pop_due(due - timedelta(minutes=45))
    assert [n.lead_minutes for n in fired] == [60]
    assert [n.lead_minutes for n in dispatcher.pending()] == [30]
