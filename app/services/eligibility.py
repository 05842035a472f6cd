"""Lesson publication gate driven by the trainer's identity verification history."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.actor import Actor
from app.models import IdentityVerification, VerificationStatus
from app.utils.errors import Forbidden
from app.utils.time import ensure_utc

logger = logging.getLogger(__name__)


class EligibilityReason(str, enum.Enum):
    IDENTITY_APPROVED = "IDENTITY_APPROVED"
    IDENTITY_NOT_SUBMITTED = "IDENTITY_NOT_SUBMITTED"
    IDENTITY_PENDING = "IDENTITY_PENDING"
    IDENTITY_REJECTED = "IDENTITY_REJECTED"


_REASONS = {
    VerificationStatus.APPROVED: (
        EligibilityReason.IDENTITY_APPROVED,
        "Identity verified; lessons may be published.",
    ),
    VerificationStatus.NOT_SUBMITTED: (
        EligibilityReason.IDENTITY_NOT_SUBMITTED,
        "Submit an identity document before publishing lessons.",
    ),
    VerificationStatus.PENDING: (
        EligibilityReason.IDENTITY_PENDING,
        "Your identity document is under review; lessons can be published once it is approved.",
    ),
    VerificationStatus.REJECTED: (
        EligibilityReason.IDENTITY_REJECTED,
        "Your identity verification was rejected. Please submit a new document.",
    ),
}


@dataclass(frozen=True)
class EligibilityResult:
    allowed: bool
    status: VerificationStatus
    reason_code: EligibilityReason
    message: str


def authoritative_status(history: Iterable[Any]) -> VerificationStatus:
    """Status of the latest submission: newest ``created_at`` first, then highest ``id``."""

    rows = list(history)
    if not rows:
        return VerificationStatus.NOT_SUBMITTED
    latest = max(rows, key=lambda row: (ensure_utc(row.created_at), row.id))
    return VerificationStatus(getattr(latest.status, "value", latest.status))


def verification_history(db: Session, trainer_id: int) -> list[IdentityVerification]:
    stmt = (
        select(IdentityVerification)
        .where(IdentityVerification.trainer_id == trainer_id)
        .order_by(IdentityVerification.created_at.desc(), IdentityVerification.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(db.scalars(stmt))


def evaluate_status(status: VerificationStatus) -> EligibilityResult:
    reason, message = _REASONS[status]
    return EligibilityResult(
        allowed=status == VerificationStatus.APPROVED,
        status=status,
        reason_code=reason,
        message=message,
    )


def check_publish_eligibility(db: Session, trainer_id: int) -> EligibilityResult:
    """Read the history from the store on every call; approval may change between visits."""

    return evaluate_status(authoritative_status(verification_history(db, trainer_id)))


def ensure_can_publish(db: Session, actor: Actor) -> EligibilityResult:
    if not actor.is_trainer or actor.user_id is None:
        raise Forbidden("Only trainers may publish lessons", code="TRAINER_REQUIRED")
    result = check_publish_eligibility(db, actor.user_id)
    if not result.allowed:
        logger.info(
            "Lesson publication blocked",
            extra={"trainer_id": actor.user_id, "reason_code": result.reason_code.value},
        )
        raise Forbidden(
            result.message,
            code=result.reason_code.value,
            details={"verification_status": result.status.value},
        )
    return result


__all__ = [
    "EligibilityReason",
    "EligibilityResult",
    "authoritative_status",
    "check_publish_eligibility",
    "ensure_can_publish",
    "evaluate_status",
    "verification_history",
]
