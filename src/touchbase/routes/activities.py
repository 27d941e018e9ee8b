from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from touchbase.auth import current_user
from touchbase.models import activity_from_dict, to_wire
from touchbase.schemas import ActivityIn, ActivityPatch

router = APIRouter(prefix="/activities", tags=["activities"])


def _services(request: Request):
    return request.app.state.services


def _outcome(outcome) -> dict:
    return {"data": to_wire(outcome.value), "warnings": outcome.warnings}


@router.get("")
async def list_activities(request: Request, type: Optional[str] = None, user_id: str = Depends(current_user)):
    store = _services(request).activities
    rows = await store.list_by_type(user_id, type) if type else await store.list(user_id)
    return [to_wire(a) for a in rows]


@router.post("", status_code=201)
async def create_activity(request: Request, body: ActivityIn, user_id: str = Depends(current_user)):
    services = _services(request)
    activity = activity_from_dict(body.to_wire())
    outcome = await services.engagement.record_activity(user_id, activity)
    return _outcome(outcome)


@router.get("/{activity_id}")
async def get_activity(request: Request, activity_id: str, user_id: str = Depends(current_user)):
    return to_wire(await _services(request).activities.get(user_id, activity_id))


@router.patch("/{activity_id}")
async def update_activity(
    request: Request,
    activity_id: str,
    body: ActivityPatch,
    user_id: str = Depends(current_user),
):
    outcome = await _services(request).engagement.update_activity(user_id, activity_id, **body.changes())
    return _outcome(outcome)


@router.post("/{activity_id}/archive")
async def archive_activity(request: Request, activity_id: str, user_id: str = Depends(current_user)):
    return _outcome(await _services(request).engagement.archive_activity(user_id, activity_id))


@router.delete("/{activity_id}")
async def delete_activity(request: Request, activity_id: str, user_id: str = Depends(current_user)):
    outcome = await _services(request).engagement.delete_activity(user_id, activity_id)
    return {"deleted": outcome.value, "warnings": outcome.warnings}
