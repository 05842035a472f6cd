"""Back-office endpoints: approvals, payout transfers and the financial dashboard."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.actor import Actor
from app.db import get_db
from app.models.payout_request import PayoutRequest
from app.models.refund import Refund, RefundStatus
from app.models.user import UserRole
from app.schemas.admin import DashboardRead, DecisionPayload, DecisionRead, TransferConfirmation
from app.schemas.payment import RefundRead
from app.schemas.payout import PayoutRequestRead
from app.security import require_actor, require_role
from app.services import settlement
from app.services.approvals import ApprovalKind, get_workflow
from app.services.ledger import DashboardStats

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/decisions/{kind}/{entity_id}", response_model=DecisionRead)
def decide(
    kind: ApprovalKind,
    entity_id: int,
    payload: DecisionPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> DecisionRead:
    entity = settlement.decide(db, kind, entity_id, payload.outcome, actor, note=payload.note)
    state = getattr(entity, get_workflow(kind).status_field)
    return DecisionRead(kind=kind.value, id=entity.id, status=state.value)


@router.post("/payouts/{payout_id}/transfer", response_model=PayoutRequestRead)
def start_transfer(
    payout_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> PayoutRequest:
    return settlement.initiate_payout_transfer(db, payout_id, actor)


@router.post("/payouts/{payout_id}/confirm", response_model=PayoutRequestRead)
def confirm_transfer(
    payout_id: int,
    payload: TransferConfirmation,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
) -> PayoutRequest:
    """Manual confirmation for transfers executed outside the processor."""

    return settlement.confirm_payout_transfer(
        db,
        payout_id,
        succeeded=payload.succeeded,
        actor=actor,
        reference=payload.transfer_ref,
    )


@router.get("/dashboard", response_model=DashboardRead)
def dashboard(
    window_start: datetime | None = None,
    window_end: datetime | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
) -> DashboardStats:
    return settlement.compute_dashboard(db, window_start, window_end)


@router.get("/refunds", response_model=list[RefundRead])
def list_refunds(
    status: RefundStatus = RefundStatus.PENDING,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
) -> list[Refund]:
    """Refund review queue, oldest first."""

    stmt = select(Refund).where(Refund.refund_status == status).order_by(Refund.created_at, Refund.id)
    return list(db.scalars(stmt))
