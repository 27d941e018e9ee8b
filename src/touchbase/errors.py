from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class TouchbaseError(Exception):
    """Base exception for touchbase errors."""


class ValidationError(TouchbaseError, ValueError):
    """User-correctable input problem, keyed by field name."""

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))

    def to_dict(self) -> dict[str, Any]:
        return {"error": "validation_failed", "fields": self.errors}


class NotFoundOrAccessDenied(TouchbaseError):
    """Target is missing or owned by someone else; the two are indistinguishable."""

    def __init__(self, kind: str = "document"):
        self.kind = kind
        super().__init__(f"{kind} not found or access denied")


class NotAuthenticated(TouchbaseError):
    def __init__(self) -> None:
        super().__init__("No current user")


class StoreError(TouchbaseError):
    """The primary document write failed. Safe to retry."""

    retryable = True


class RelationshipConflict(TouchbaseError):
    """An explicit create hit an existing relationship with the same name.

    The caller picks one resolution: edit ``existing`` or fork a new
    relationship named ``fork_name``.
    """

    def __init__(self, existing, fork_name: str):
        self.existing = existing
        self.fork_name = fork_name
        super().__init__(f"A relationship already exists for {existing.contact_name}")


@dataclass
class Outcome(Generic[T]):
    """Result of an operation whose secondary side effects may have failed."""

    value: T
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings
