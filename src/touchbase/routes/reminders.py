from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from touchbase.auth import current_user
from touchbase.models import to_wire
from touchbase.schemas import SnoozeIn

router = APIRouter(prefix="/reminders", tags=["reminders"])


def _services(request: Request):
    return request.app.state.services


@router.get("")
async def list_reminders(
    request: Request,
    tab: str = "all",
    tag: Optional[str] = None,
    user_id: str = Depends(current_user),
):
    store = _services(request).reminders
    rows = await store.list_by_tab(user_id, tab)
    if tag:
        wanted = tag.lower()
        rows = [r for r in rows if any(t.lower() == wanted for t in r.tags)]
    return [to_wire(r) for r in rows]


@router.get("/{reminder_id}")
async def get_reminder(request: Request, reminder_id: str, user_id: str = Depends(current_user)):
    return to_wire(await _services(request).reminders.get(user_id, reminder_id))


@router.post("/{reminder_id}/done")
async def mark_done(request: Request, reminder_id: str, user_id: str = Depends(current_user)):
    outcome = await _services(request).engagement.mark_reminder_done(user_id, reminder_id)
    data = to_wire(outcome.value) if outcome.value is not None else None
    return {"data": data, "warnings": outcome.warnings}


@router.post("/{reminder_id}/snooze")
async def snooze(request: Request, reminder_id: str, body: SnoozeIn, user_id: str = Depends(current_user)):
    outcome = await _services(request).engagement.snooze_reminder(user_id, reminder_id, body.days)
    return {"data": to_wire(outcome.value), "warnings": outcome.warnings}


@router.delete("/{reminder_id}")
async def delete_reminder(request: Request, reminder_id: str, user_id: str = Depends(current_user)):
    outcome = await _services(request).engagement.delete_reminder(user_id, reminder_id)
    return {"deleted": outcome.value, "warnings": outcome.warnings}
