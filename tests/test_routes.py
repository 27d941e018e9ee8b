from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from touchbase.models import format_timestamp

from conftest import NOW, USER

HEADERS = {"X-User-Id": USER}
DUE = format_timestamp(NOW + timedelta(days=2))


@pytest.fixture
def client(services):
    from touchbase.web import create_app

    app = create_app(services=services)
    return TestClient(app)


def _add(client, name, **fields):
    resp = client.post("/relationships", json={"contactName": name, **fields}, headers=HEADERS)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_requests_without_user_are_rejected(client):
    resp = client.get("/relationships")
    assert resp.status_code == 401
    assert resp.json()["error"] == "not_authenticated"


def test_relationships_list_empty(client):
    resp = client.get("/relationships", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json() == []


def test_frequency_change_recomputes_next_reminder(client):
    sam = _add(client, "Sam", lastContactDate="2024-01-10T00:00:00Z", reminderFrequency="month")
    assert sam["nextReminderDate"] == "2024-02-10T00:00:00+00:00"

    resp = client.patch(f"/relationships/{sam['id']}", json={"reminderFrequency": "3months"}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["nextReminderDate"] == "2024-04-10T00:00:00+00:00"


def test_last_contact_option(client):
    sam = _add(client, "Sam", lastContactOption="yesterday")
    assert sam["lastContactDate"] == format_timestamp(NOW - timedelta(days=1))

    resp = client.post(
        "/relationships", json={"contactName": "Bea", "lastContactOption": "decade"}, headers=HEADERS
    )
    assert resp.status_code == 422
    assert "lastContactOption" in resp.json()["fields"]


def test_invalid_contact_data_returns_field_errors(client):
    resp = client.post(
        "/relationships",
        json={"contactName": "Sam", "contactData": {"website": "not a domain", "birthday": "02/30/2020"}},
        headers=HEADERS,
    )
    assert resp.status_code == 422
    assert set(resp.json()["fields"]) == {"contactData.website", "contactData.birthday"}


def test_duplicate_name_offers_edit_or_fork(client):
    sam = _add(client, "Sam")

    resp = client.post("/relationships", json={"contactName": "sam"}, headers=HEADERS)
    assert resp.status_code == 409
    body = resp.json()
    assert body["options"] == {"edit": sam["id"], "fork": "sam (2024)"}
    assert body["existing"]["contactName"] == "Sam"

    resp = client.post("/relationships?onConflict=fork", json={"contactName": "Sam"}, headers=HEADERS)
    assert resp.status_code == 201
    assert resp.json()["contactName"] == "Sam (2024)"

    resp = client.post("/relationships?onConflict=edit", json={"contactName": "Sam"}, headers=HEADERS)
    assert resp.json()["id"] == sam["id"]


def test_search_and_tag_filters(client):
    _add(client, "Alex", tags=["work"], notes="met at PyCon")
    _add(client, "Bea", tags=["family"])

    names = lambda resp: [r["contactName"] for r in resp.json()]  # noqa: E731
    assert names(client.get("/relationships?q=pycon", headers=HEADERS)) == ["Alex"]
    assert names(client.get("/relationships?tag=family", headers=HEADERS)) == ["Bea"]


def test_other_users_get_404(client):
    sam = _add(client, "Sam")
    resp = client.get(f"/relationships/{sam['id']}", headers={"X-User-Id": "intruder"})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "relationship not found or access denied"

    resp = client.get("/relationships/does-not-exist", headers=HEADERS)
    assert resp.status_code == 404
    assert resp.json()["detail"] == "relationship not found or access denied"


def test_note_for_new_contact_creates_relationship(client):
    resp = client.post(
        "/activities", json={"type": "note", "contactName": "Alex", "content": "Loves bouldering"}, headers=HEADERS
    )
    assert resp.status_code == 201
    assert resp.json()["warnings"] == []
    assert resp.json()["data"]["category"] == "general"

    people = client.get("/relationships", headers=HEADERS).json()
    assert [p["contactName"] for p in people] == ["Alex"]


def test_reminder_activity_round_trip(client):
    resp = client.post(
        "/activities",
        json={"type": "reminder", "contactName": "Sam", "reminderDate": DUE, "frequency": "week"},
        headers=HEADERS,
    )
    assert resp.status_code == 201
    activity = resp.json()["data"]
    assert activity["reminderId"]

    reminder = client.get(f"/reminders/{activity['reminderId']}", headers=HEADERS).json()
    assert reminder["contactName"] == "Sam"
    assert reminder["date"] == DUE
    assert reminder["frequency"] == "week"
    assert reminder["isThisWeek"] is True

    later = format_timestamp(NOW + timedelta(days=4))
    resp = client.patch(f"/activities/{activity['id']}", json={"reminderDate": later}, headers=HEADERS)
    assert resp.status_code == 200
    assert client.get(f"/reminders/{activity['reminderId']}", headers=HEADERS).json()["date"] == later

    resp = client.delete(f"/activities/{activity['id']}", headers=HEADERS)
    assert resp.json()["deleted"] is True
    assert client.get(f"/reminders/{activity['reminderId']}", headers=HEADERS).status_code == 404


def test_reminder_in_the_past_is_rejected(client):
    resp = client.post(
        "/activities",
        json={"type": "reminder", "contactName": "Sam", "reminderDate": format_timestamp(NOW - timedelta(days=1))},
        headers=HEADERS,
    )
    assert resp.status_code == 422
    assert "reminderDate" in resp.json()["fields"]


def test_unknown_activity_type_is_rejected(client):
    resp = client.post("/activities", json={"type": "meeting", "contactName": "Sam"}, headers=HEADERS)
    assert resp.status_code == 422


def test_activity_list_filters_and_archive(client):
    note = client.post(
        "/activities", json={"type": "note", "contactName": "Sam", "content": "x"}, headers=HEADERS
    ).json()["data"]
    client.post("/activities", json={"type": "interaction", "contactName": "Sam"}, headers=HEADERS)

    assert len(client.get("/activities", headers=HEADERS).json()) == 2
    assert [a["type"] for a in client.get("/activities?type=interaction", headers=HEADERS).json()] == ["interaction"]

    resp = client.post(f"/activities/{note['id']}/archive", headers=HEADERS)
    assert resp.json()["data"]["isArchived"] is True
    assert len(client.get("/activities", headers=HEADERS).json()) == 1


def test_reminder_done_and_snooze(client):
    activity = client.post(
        "/activities",
        json={"type": "reminder", "contactName": "Sam", "reminderDate": DUE, "frequency": "month"},
        headers=HEADERS,
    ).json()["data"]
    reminder_id = activity["reminderId"]

    resp = client.post(f"/reminders/{reminder_id}/snooze", json={"days": 2}, headers=HEADERS)
    assert resp.json()["data"]["date"] == format_timestamp(NOW + timedelta(days=4))

    resp = client.post(f"/reminders/{reminder_id}/done", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["data"]["date"] == format_timestamp(NOW + timedelta(days=4 + 31))

    tabs = {tab: client.get(f"/reminders?tab={tab}", headers=HEADERS).json() for tab in ("missed", "upcoming")}
    assert tabs["missed"] == []
    assert [r["id"] for r in tabs["upcoming"]] == [reminder_id]
    assert client.get("/reminders?tab=someday", headers=HEADERS).status_code == 422


def test_delete_relationship_cascades(client):
    sam = _add(client, "Sam")
    client.post("/activities", json={"type": "note", "contactName": "Sam", "content": "x"}, headers=HEADERS)
    client.post(
        "/activities", json={"type": "reminder", "contactName": "Sam", "reminderDate": DUE}, headers=HEADERS
    )

    resp = client.delete(f"/relationships/{sam['id']}", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json() == {"deleted": True, "childrenDeleted": 3, "warnings": []}
    assert client.get("/activities", headers=HEADERS).json() == []
    assert client.get("/reminders", headers=HEADERS).json() == []


def test_follow_up_lists_overdue_relationships(client):
    _add(client, "Alex", lastContactOption="3months", reminderFrequency="month")
    _add(client, "Bea")
    resp = client.get("/relationships/follow-up", headers=HEADERS)
    assert [r["contactName"] for r in resp.json()] == ["Alex"]


def test_store_failure_maps_to_503(client, services, monkeypatch):
    from touchbase.errors import StoreError

    async def broken(*args, **kwargs):
        raise StoreError("database is locked")

    monkeypatch.setattr(services.relationships, "list", broken)
    resp = client.get("/relationships", headers=HEADERS)
    assert resp.status_code == 503
    assert resp.json()["retryable"] is True
