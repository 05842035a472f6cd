"""Explicit caller identity passed to every state-changing operation."""
from __future__ import annotations

from dataclasses import dataclass

from app.models.user import UserRole


@dataclass(frozen=True)
class Actor:
    """Who is acting and with which capability.

    ``user_id`` is ``None`` only for the processor/transfer callbacks
    (``SYSTEM_ACTOR``), which never pass an admin check.
    """

    user_id: int | None
    role: UserRole | None
    label: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_trainer(self) -> bool:
        return self.role == UserRole.TRAINER

    @property
    def audit_name(self) -> str:
        if self.label:
            return self.label
        return f"user:{self.user_id}"


SYSTEM_ACTOR = Actor(user_id=None, role=None, label="psp")


__all__ = ["Actor", "SYSTEM_ACTOR"]
