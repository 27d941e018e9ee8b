from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from touchbase.container import build_services
from touchbase.services.contacts import NullContactDirectory
from touchbase.services.scheduler import LocalNotificationDispatcher

# A Wednesday, so "this week" runs from Mon 2024-01-08 to Sun 2024-01-14.
NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
USER = "user-1"


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FlakyDispatcher(LocalNotificationDispatcher):
    """Local dispatcher that can be told to fail."""

    def __init__(self, clock):
        super().__init__(clock)
        self.fail_schedule = False
        self.fail_cancel = False
        self.cancelled: list[str] = []

    async def schedule(self, due_date, lead_minutes, message=""):
        if self.fail_schedule:
            raise RuntimeError("notification permission denied")
        return await super().schedule(due_date, lead_minutes, message)

    async def cancel(self, handles):
        if self.fail_cancel:
            raise RuntimeError("dispatcher unavailable")
        self.cancelled.extend(handles)
        await super().cancel(handles)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def dispatcher(clock):
    return FlakyDispatcher(clock)


@pytest.fixture
def services(db_path, dispatcher, clock):
    return build_services(
        db_path,
        dispatcher=dispatcher,
        directory=NullContactDirectory(),
        clock=clock,
        lead_minutes=(60, 30, 15),
    )
