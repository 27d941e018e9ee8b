from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from touchbase.errors import (
    NotAuthenticated,
    NotFoundOrAccessDenied,
    RelationshipConflict,
    ValidationError,
)
from touchbase.models import ContactData, DeviceContact, EmailAddress, PhoneNumber, Relationship
from touchbase.services.contacts import JsonContactDirectory, NullContactDirectory, find_contact, search_contacts

from conftest import NOW, USER

UTC = timezone.utc


@pytest.mark.asyncio
async def test_create_computes_next_reminder_date(services):
    store = services.relationships
    created = await store.create(
        USER,
        Relationship(
            contact_name="  Sam  ",
            last_contact_date=datetime(2024, 1, 10, tzinfo=UTC),
            reminder_frequency="month",
        ),
    )
    assert created.id
    assert created.user_id == USER
    assert created.contact_name == "Sam"
    assert created.next_reminder_date == datetime(2024, 2, 10, tzinfo=UTC)


@pytest.mark.asyncio
async def test_frequency_change_recomputes_next_reminder(services):
    store = services.relationships
    sam = await store.create(
        USER, Relationship(contact_name="Sam", last_contact_date=datetime(2024, 1, 10, tzinfo=UTC))
    )
    updated = await store.update(USER, sam.id, reminder_frequency="3months")
    assert updated.next_reminder_date == datetime(2024, 4, 10, tzinfo=UTC)

    never = await store.update(USER, sam.id, reminder_frequency="never")
    assert never.next_reminder_date is None


@pytest.mark.asyncio
async def test_update_last_contact_moves_next_reminder(services):
    store = services.relationships
    sam = await store.create(USER, Relationship(contact_name="Sam", reminder_frequency="week"))
    assert sam.last_contact_date == NOW
    later = NOW + timedelta(days=3)
    updated = await store.update_last_contact(USER, sam.id, later, "inPerson")
    assert updated.last_contact_method == "inPerson"
    assert updated.next_reminder_date == later + timedelta(days=7)


@pytest.mark.asyncio
async def test_invalid_fields_are_rejected(services):
    store = services.relationships
    with pytest.raises(ValidationError) as info:
        await store.create(USER, Relationship(contact_name="Sam", reminder_frequency="daily"))
    assert "reminderFrequency" in info.value.errors

    sam = await store.create(USER, Relationship(contact_name="Sam"))
    with pytest.raises(ValidationError):
        await store.update(USER, sam.id, next_reminder_date=NOW)
    with pytest.raises(ValidationError):
        await store.update(USER, sam.id, contact_name="   ")


@pytest.mark.asyncio
async def test_other_users_cannot_see_or_touch_a_relationship(services):
    store = services.relationships
    sam = await store.create(USER, Relationship(contact_name="Sam"))

    for call in (
        store.get("intruder", sam.id),
        store.update("intruder", sam.id, notes="mine now"),
        store.delete("intruder", sam.id),
    ):
        with pytest.raises(NotFoundOrAccessDenied) as info:
            await call
        assert str(info.value) == "relationship not found or access denied"
    with pytest.raises(NotFoundOrAccessDenied) as info:
        await store.get(USER, "missing")
    assert str(info.value) == "relationship not found or access denied"
    assert await store.list("intruder") == []


@pytest.mark.asyncio
async def test_every_operation_requires_a_user(services):
    with pytest.raises(NotAuthenticated):
        await services.relationships.list("")
    with pytest.raises(NotAuthenticated):
        await services.activities.list(None)
    with pytest.raises(NotAuthenticated):
        await services.reminders.list("  ")


@pytest.mark.asyncio
async def test_search_tags_and_follow_up(services):
    store = services.relationships
    await store.create(
        USER,
        Relationship(
            contact_name="Alex",
            tags=["work"],
            last_contact_date=NOW - timedelta(days=40),
            contact_data=ContactData(company="Acme", emails=[EmailAddress("alex@acme.io")]),
        ),
    )
    await store.create(
        USER,
        Relationship(
            contact_name="Bea",
            tags=["family", "work"],
            contact_data=ContactData(phones=[PhoneNumber("+15551234567")]),
        ),
    )

    assert [r.contact_name for r in await store.list(USER)] == ["Alex", "Bea"]
    assert [r.contact_name for r in await store.search(USER, "acme")] == ["Alex"]
    assert [r.contact_name for r in await store.search(USER, "555123")] == ["Bea"]
    assert [r.contact_name for r in await store.list_by_tag(USER, "family")] == ["Bea"]
    assert await store.all_tags(USER) == ["work", "family"]
    assert await store.count(USER) == 2
    assert [r.contact_name for r in await store.needing_follow_up(USER)] == ["Alex"]


@pytest.mark.asyncio
async def test_subscribe_sees_new_relationships(services):
    seen = []
    unsubscribe = services.relationships.subscribe(USER, lambda rows: seen.append([r.contact_name for r in rows]))
    await services.relationships.create(USER, Relationship(contact_name="Sam"))
    unsubscribe()
    assert seen == [[], ["Sam"]]


# -- reconciler ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ensure_is_idempotent_across_case_and_whitespace(services):
    reconciler = services.reconciler
    first = await reconciler.ensure_relationship_exists(USER, "Alex")
    again = await reconciler.ensure_relationship_exists(USER, "  alex ")
    assert first is not None
    assert again.id == first.id
    assert await services.relationships.count(USER) == 1


@pytest.mark.asyncio
async def test_ensure_uses_defaults_and_device_contact(services):
    contact = DeviceContact(
        name="Alex", id="device-7", phones=[PhoneNumber("+15550001111", "mobile")], company="Acme"
    )
    alex = await services.reconciler.ensure_relationship_exists(USER, "Alex", contact)
    assert alex.contact_id == "device-7"
    assert alex.reminder_frequency == "month"
    assert alex.last_contact_method == "other"
    assert alex.tags == []
    assert alex.last_contact_date == NOW
    assert alex.next_reminder_date == datetime(2024, 2, 10, 12, 0, tzinfo=UTC)
    assert alex.contact_data.company == "Acme"
    assert alex.contact_data.phones[0].number == "+15550001111"


@pytest.mark.asyncio
async def test_concurrent_ensures_create_one_relationship(services):
    results = await asyncio.gather(
        *(services.reconciler.ensure_relationship_exists(USER, name) for name in ["Alex", "alex", " ALEX "])
    )
    assert len({r.id for r in results}) == 1
    assert await services.relationships.count(USER) == 1


@pytest.mark.asyncio
async def test_ensure_never_raises(services, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("store offline")

    monkeypatch.setattr(services.relationships, "create", broken)
    assert await services.reconciler.ensure_relationship_exists(USER, "Alex") is None
    assert await services.reconciler.ensure_relationship_exists(USER, "   ") is None


@pytest.mark.asyncio
async def test_explicit_create_reports_collision(services):
    reconciler = services.reconciler
    await reconciler.create_relationship(USER, Relationship(contact_name="Sam"))

    with pytest.raises(RelationshipConflict) as info:
        await reconciler.create_relationship(USER, Relationship(contact_name="sam"))
    assert info.value.existing.contact_name == "Sam"
    assert info.value.fork_name == "sam (2024)"


@pytest.mark.asyncio
async def test_collision_resolutions(services):
    reconciler = services.reconciler
    sam = await reconciler.create_relationship(USER, Relationship(contact_name="Sam"))

    edited = await reconciler.create_relationship(USER, Relationship(contact_name="Sam"), on_conflict="edit")
    assert edited.id == sam.id

    forked = await reconciler.create_relationship(
        USER, Relationship(contact_name="Sam", notes="from the climbing gym"), on_conflict="fork"
    )
    assert forked.contact_name == "Sam (2024)"
    assert forked.notes == "from the climbing gym"
    assert await services.relationships.count(USER) == 2

    with pytest.raises(ValidationError):
        await reconciler.create_relationship(USER, Relationship(contact_name="Sam"), on_conflict="merge")


# -- device contacts -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_null_directory_is_unavailable():
    directory = NullContactDirectory()
    assert not directory.available
    assert await directory.list_contacts() == []
    assert await find_contact(directory, "Alex") is None


@pytest.mark.asyncio
async def test_json_directory_search(tmp_path):
    path = tmp_path / "contacts.json"
    path.write_text(
        '[{"name": "Alex Chen", "id": 1, "phones": [{"number": "+15550001111"}],'
        ' "emails": [{"email": "alex@acme.io"}]},'
        ' {"name": "Bea", "id": 2}, {"id": 3}]'
    )
    directory = JsonContactDirectory(path)
    assert directory.available
    assert len(await directory.list_contacts()) == 2
    assert [c.name for c in await search_contacts(directory, "acme")] == ["Alex Chen"]
    assert [c.name for c in await search_contacts(directory, "0001")] == ["Alex Chen"]
    assert (await find_contact(directory, " bea ")).id == "2"

    denied = JsonContactDirectory(path, granted=False)
    assert not denied.available
    assert await denied.list_contacts() == []
