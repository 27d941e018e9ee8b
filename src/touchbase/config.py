from __future__ import annotations

import os
from pathlib import Path

DEFAULT_DB_PATH = Path.home() / ".touchbase" / "touchbase.db"
DEFAULT_LEAD_MINUTES = (60, 30, 15)


def db_path() -> Path:
    value = os.environ.get("TOUCHBASE_DB_PATH", "")
    return Path(value).expanduser() if value else DEFAULT_DB_PATH


def current_user() -> str:
    return os.environ.get("TOUCHBASE_USER", "")


def lead_minutes() -> tuple[int, ...]:
    """Notification offsets before a reminder is due, e.g. ``60,30,15``."""
    raw = os.environ.get("TOUCHBASE_LEAD_MINUTES", "")
    if not raw.strip():
        return DEFAULT_LEAD_MINUTES
    try:
        values = tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        raise ValueError(f"TOUCHBASE_LEAD_MINUTES must be comma separated integers, got {raw!r}") from None
    if any(v < 0 for v in values):
        raise ValueError("TOUCHBASE_LEAD_MINUTES must not contain negative offsets")
    return values


def contacts_file() -> Path | None:
    value = os.environ.get("TOUCHBASE_CONTACTS_FILE", "")
    return Path(value).expanduser() if value else None


def log_level() -> str:
    return os.environ.get("TOUCHBASE_LOG_LEVEL", "INFO").upper()
