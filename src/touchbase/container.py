from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from touchbase import config
from touchbase.db import DocumentStore
from touchbase.models import utc_now
from touchbase.services.activities import ActivityStore
from touchbase.services.contacts import ContactDirectory, JsonContactDirectory, NullContactDirectory
from touchbase.services.engagement import EngagementService
from touchbase.services.reconciler import RelationshipReconciler
from touchbase.services.relationships import RelationshipStore
from touchbase.services.reminders import ReminderStore
from touchbase.services.scheduler import (
    LocalNotificationDispatcher,
    NotificationDispatcher,
    ReminderScheduler,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: DocumentStore
    relationships: RelationshipStore
    activities: ActivityStore
    reminders: ReminderStore
    reconciler: RelationshipReconciler
    scheduler: ReminderScheduler
    engagement: EngagementService
    directory: ContactDirectory
    clock: Callable[[], datetime] = utc_now


def default_directory() -> ContactDirectory:
    path = config.contacts_file()
    if path is None:
        return NullContactDirectory()
    return JsonContactDirectory(path)


def build_services(
    db_path: Path | None = None,
    dispatcher: NotificationDispatcher | None = None,
    directory: ContactDirectory | None = None,
    clock: Callable[[], datetime] = utc_now,
    lead_minutes: tuple[int, ...] | None = None,
) -> Services:
    """Construct every store once. Anything not passed in comes from config."""
    store = DocumentStore(db_path)
    relationships = RelationshipStore(store, clock)
    activities = ActivityStore(store, clock)
    reminders = ReminderStore(store, clock)
    reconciler = RelationshipReconciler(relationships, clock)
    scheduler = ReminderScheduler(
        dispatcher or LocalNotificationDispatcher(clock),
        lead_minutes if lead_minutes is not None else config.lead_minutes(),
        clock,
    )
    engagement = EngagementService(relationships, activities, reminders, reconciler, scheduler, clock)
    directory = directory or default_directory()
    logger.debug("Services ready on %s (contacts available: %s)", store.db_path, directory.available)
    return Services(
        store=store,
        relationships=relationships,
        activities=activities,
        reminders=reminders,
        reconciler=reconciler,
        scheduler=scheduler,
        engagement=engagement,
        directory=directory,
        clock=clock,
    )
