from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from touchbase.auth import current_user
from touchbase.errors import ValidationError
from touchbase.models import Relationship, to_wire
from touchbase.schemas import RelationshipIn, RelationshipPatch
from touchbase.services.validation import validate_relationship_form

router = APIRouter(prefix="/relationships", tags=["relationships"])


def _services(request: Request):
    return request.app.state.services


@router.get("")
async def list_relationships(
    request: Request,
    q: str = "",
    tag: Optional[str] = None,
    user_id: str = Depends(current_user),
):
    store = _services(request).relationships
    if tag:
        rows = await store.list_by_tag(user_id, tag)
    elif q:
        rows = await store.search(user_id, q)
    else:
        rows = await store.list(user_id)
    return [to_wire(r) for r in rows]


@router.post("", status_code=201)
async def create_relationship(
    request: Request,
    body: RelationshipIn,
    on_conflict: Optional[str] = Query(None, alias="onConflict"),
    user_id: str = Depends(current_user),
):
    services = _services(request)
    now = services.clock()
    form = body.to_wire(now)
    errors = validate_relationship_form(form, now.date())
    if errors:
        raise ValidationError(errors)
    created = await services.reconciler.create_relationship(
        user_id, Relationship.from_dict(form), on_conflict=on_conflict
    )
    return to_wire(created)


@router.get("/follow-up")
async def follow_up(request: Request, user_id: str = Depends(current_user)):
    rows = await _services(request).relationships.needing_follow_up(user_id)
    return [to_wire(r) for r in rows]


@router.get("/{relationship_id}")
async def get_relationship(request: Request, relationship_id: str, user_id: str = Depends(current_user)):
    return to_wire(await _services(request).relationships.get(user_id, relationship_id))


@router.patch("/{relationship_id}")
async def update_relationship(
    request: Request,
    relationship_id: str,
    body: RelationshipPatch,
    user_id: str = Depends(current_user),
):
    store = _services(request).relationships
    current = await store.get(user_id, relationship_id)
    errors = validate_relationship_form({**current.to_dict(), **body.to_wire()})
    if errors:
        raise ValidationError(errors)
    return to_wire(await store.update(user_id, relationship_id, **body.changes()))


@router.delete("/{relationship_id}")
async def delete_relationship(request: Request, relationship_id: str, user_id: str = Depends(current_user)):
    outcome = await _services(request).engagement.delete_relationship(user_id, relationship_id)
    return {"deleted": True, "childrenDeleted": outcome.value, "warnings": outcome.warnings}
