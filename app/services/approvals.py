"""Generic pending -> approved/rejected workflow shared by refunds, payouts and verifications.

Decisions are compare-and-swap updates on the status column: the write only
lands if the row is still ``pending`` at write time, so a second concurrent
decider gets ``InvalidTransition`` instead of overwriting the first decision.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.actor import Actor
from app.models import (
    ACTIVE_PAYOUT_STATUSES,
    IdentityVerification,
    PayoutRequest,
    PayoutStatus,
    Refund,
    RefundStatus,
    VerificationStatus,
)
from app.utils.audit import log_audit
from app.utils.errors import DuplicateActiveRequest, Forbidden, InvalidTransition, NotFound, ValidationFailed
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class ApprovalKind(str, enum.Enum):
    REFUND = "refund"
    PAYOUT = "payout"
    IDENTITY_VERIFICATION = "identity_verification"


class Outcome(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SettleOutcome:
    entity: Any
    changed: bool


@dataclass(frozen=True)
class ApprovalWorkflow:
    """State machine bound to one table.

    ``approved_state`` is what an approval writes (refunds go straight to
    ``refunded``). ``settled_state`` is only set for payouts.
    """

    kind: ApprovalKind
    model: type
    entity_name: str
    status_field: str
    notes_field: str
    pending_state: enum.Enum
    approved_state: enum.Enum
    rejected_state: enum.Enum
    settled_state: enum.Enum | None = None
    # Column holding the owner for the one-active-request rule, if any.
    unique_active_owner: str | None = None
    active_states: frozenset = frozenset()

    @property
    def status_column(self):
        return getattr(self.model, self.status_field)

    def _status_of(self, entity: Any) -> enum.Enum:
        return getattr(entity, self.status_field)

    def get(self, db: Session, entity_id: int) -> Any:
        entity = db.get(self.model, entity_id, populate_existing=True)
        if entity is None:
            raise NotFound(
                f"{self.entity_name} {entity_id} not found",
                code=f"{self.kind.value.upper()}_NOT_FOUND",
            )
        return entity

    def ensure_no_active(self, db: Session, owner_id: int) -> None:
        """Raise ``DuplicateActiveRequest`` if ``owner_id`` has a non-terminal entity."""

        if self.unique_active_owner is None:
            return
        existing = db.scalars(
            select(self.model)
            .where(getattr(self.model, self.unique_active_owner) == owner_id)
            .where(self.status_column.in_(list(self.active_states)))
            .limit(1)
        ).first()
        if existing is not None:
            raise DuplicateActiveRequest(
                f"An active {self.entity_name} already exists",
                details={"existing_id": existing.id, "status": self._status_of(existing).value},
            )

    def submit(self, db: Session, entity: Any, *, actor: Actor) -> Any:
        """Insert ``entity`` in ``pending``; the caller commits."""

        setattr(entity, self.status_field, self.pending_state)
        if self.unique_active_owner is not None:
            self.ensure_no_active(db, getattr(entity, self.unique_active_owner))
        db.add(entity)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            logger.warning(
                "Concurrent submission rejected",
                extra={"kind": self.kind.value, "owner": self.unique_active_owner},
            )
            raise DuplicateActiveRequest(f"An active {self.entity_name} already exists") from exc

        log_audit(
            db,
            actor=actor.audit_name,
            action=f"{self.kind.value.upper()}_SUBMITTED",
            entity=self.entity_name,
            entity_id=entity.id,
            data={"status": self.pending_state.value},
        )
        logger.info("Approval submitted", extra={"kind": self.kind.value, "entity_id": entity.id})
        return entity

    def decide(
        self,
        db: Session,
        entity_id: int,
        outcome: Outcome,
        actor: Actor,
        *,
        note: str | None = None,
    ) -> Any:
        """Move a pending entity to approved/rejected; the caller commits."""

        if not actor.is_admin:
            raise Forbidden("Only administrators may decide approvals", code="ADMIN_REQUIRED")
        try:
            outcome = Outcome(outcome)
        except ValueError as exc:
            raise ValidationFailed(f"Unknown outcome {outcome!r}", code="OUTCOME_INVALID") from exc

        target = self.approved_state if outcome == Outcome.APPROVED else self.rejected_state
        values: dict[str, Any] = {
            self.status_field: target,
            "decided_by": actor.user_id,
            "decided_at": utcnow(),
        }
        if note is not None:
            values[self.notes_field] = note

        result = db.execute(
            update(self.model)
            .where(self.model.id == entity_id, self.status_column == self.pending_state)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self.get(db, entity_id)
            logger.info(
                "Decision rejected: entity no longer pending",
                extra={"kind": self.kind.value, "entity_id": entity_id, "status": self._status_of(current).value},
            )
            raise InvalidTransition(
                f"{self.entity_name} {entity_id} is {self._status_of(current).value}, not pending",
                details={"status": self._status_of(current).value, "requested": outcome.value},
            )

        entity = self.get(db, entity_id)
        log_audit(
            db,
            actor=actor.audit_name,
            action=f"{self.kind.value.upper()}_{outcome.value.upper()}",
            entity=self.entity_name,
            entity_id=entity_id,
            data={"from": self.pending_state.value, "to": target.value, "note": note},
        )
        logger.info(
            "Approval decided",
            extra={"kind": self.kind.value, "entity_id": entity_id, "outcome": outcome.value},
        )
        return entity

    def mark_settled(self, db: Session, entity_id: int, *, actor: Actor, reference: str | None = None) -> SettleOutcome:
        """``approved -> paid``. Repeating on a settled entity is a successful no-op."""

        if self.settled_state is None:
            raise InvalidTransition(f"{self.entity_name} has no settlement step", code="SETTLEMENT_UNSUPPORTED")

        now = utcnow()
        values: dict[str, Any] = {self.status_field: self.settled_state, "paid_at": now}
        if reference is not None:
            values["transfer_ref"] = reference
        result = db.execute(
            update(self.model)
            .where(self.model.id == entity_id, self.status_column == self.approved_state)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        entity = self.get(db, entity_id)
        if result.rowcount == 1:
            log_audit(
                db,
                actor=actor.audit_name,
                action=f"{self.kind.value.upper()}_SETTLED",
                entity=self.entity_name,
                entity_id=entity_id,
                data={"from": self.approved_state.value, "to": self.settled_state.value, "transfer_ref": reference},
            )
            logger.info("Approval settled", extra={"kind": self.kind.value, "entity_id": entity_id})
            return SettleOutcome(entity=entity, changed=True)

        status = self._status_of(entity)
        if status == self.settled_state:
            logger.info("Duplicate settlement ignored", extra={"kind": self.kind.value, "entity_id": entity_id})
            return SettleOutcome(entity=entity, changed=False)
        raise InvalidTransition(
            f"{self.entity_name} {entity_id} is {status.value}, not {self.approved_state.value}",
            details={"status": status.value},
        )

    def count_pending(self, db: Session) -> int:
        """All-time number of entities awaiting a decision."""

        stmt = select(func.count()).select_from(self.model).where(self.status_column == self.pending_state)
        return int(db.scalar(stmt) or 0)


REFUNDS = ApprovalWorkflow(
    kind=ApprovalKind.REFUND,
    model=Refund,
    entity_name="Refund",
    status_field="refund_status",
    notes_field="admin_notes",
    pending_state=RefundStatus.PENDING,
    approved_state=RefundStatus.REFUNDED,
    rejected_state=RefundStatus.REJECTED,
)

PAYOUTS = ApprovalWorkflow(
    kind=ApprovalKind.PAYOUT,
    model=PayoutRequest,
    entity_name="PayoutRequest",
    status_field="status",
    notes_field="admin_notes",
    pending_state=PayoutStatus.PENDING,
    approved_state=PayoutStatus.APPROVED,
    rejected_state=PayoutStatus.REJECTED,
    settled_state=PayoutStatus.PAID,
    unique_active_owner="trainer_id",
    active_states=ACTIVE_PAYOUT_STATUSES,
)

IDENTITY_VERIFICATIONS = ApprovalWorkflow(
    kind=ApprovalKind.IDENTITY_VERIFICATION,
    model=IdentityVerification,
    entity_name="IdentityVerification",
    status_field="status",
    notes_field="notes",
    pending_state=VerificationStatus.PENDING,
    approved_state=VerificationStatus.APPROVED,
    rejected_state=VerificationStatus.REJECTED,
)

WORKFLOWS: dict[ApprovalKind, ApprovalWorkflow] = {
    workflow.kind: workflow for workflow in (REFUNDS, PAYOUTS, IDENTITY_VERIFICATIONS)
}


def get_workflow(kind: ApprovalKind | str) -> ApprovalWorkflow:
    try:
        return WORKFLOWS[ApprovalKind(kind)]
    except ValueError as exc:
        raise ValidationFailed(f"Unknown approval kind {kind!r}", code="KIND_INVALID") from exc


__all__ = [
    "ApprovalKind",
    "ApprovalWorkflow",
    "IDENTITY_VERIFICATIONS",
    "Outcome",
    "PAYOUTS",
    "REFUNDS",
    "SettleOutcome",
    "WORKFLOWS",
    "get_workflow",
]
