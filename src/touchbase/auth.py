from __future__ import annotations

from fastapi import Header

from touchbase.errors import NotAuthenticated, NotFoundOrAccessDenied


def require_user(user_id: str | None) -> str:
    """Reject any store operation made without a current user."""
    if not user_id or not str(user_id).strip():
        raise NotAuthenticated()
    return str(user_id)


def check_owner(doc: dict | None, user_id: str, kind: str) -> dict:
    """Return ``doc`` if it exists and belongs to ``user_id``; otherwise deny."""
    if doc is None or doc.get("userId") != user_id:
        raise NotFoundOrAccessDenied(kind)
    return doc


def current_user(x_user_id: str | None = Header(default=None)) -> str:
    """FastAPI dependency resolving the caller from the ``X-User-Id`` header."""
    return require_user(x_user_id)
