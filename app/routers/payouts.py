"""Trainer payout request endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.actor import Actor
from app.db import get_db
from app.models.payout_request import PayoutRequest
from app.models.user import UserRole
from app.schemas.payout import PayoutQuoteRead, PayoutRequestRead
from app.security import require_actor, require_role
from app.services import settlement
from app.services.payouts import quote_payout
from app.utils.time import utcnow

router = APIRouter(prefix="/payouts", tags=["payouts"])


@router.get("/quote", response_model=PayoutQuoteRead)
def get_quote(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(UserRole.TRAINER)),
) -> PayoutQuoteRead:
    quote = quote_payout(db, actor.user_id, utcnow())
    return PayoutQuoteRead(
        trainer_id=quote.trainer_id,
        payment_count=len(quote.payment_ids),
        total_sales=quote.total_sales,
        gross_eligible_amount=quote.gross_eligible_amount,
        transfer_fee=quote.transfer_fee,
        net_payout=quote.net_payout,
        payout_eligible_date=quote.payout_eligible_date,
    )


@router.post("", response_model=PayoutRequestRead, status_code=status.HTTP_201_CREATED)
def request_payout(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> PayoutRequest:
    return settlement.submit_payout_request(db, actor.user_id, actor, utcnow())


@router.get("", response_model=list[PayoutRequestRead])
def list_payouts(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(UserRole.TRAINER)),
) -> list[PayoutRequest]:
    stmt = (
        select(PayoutRequest)
        .where(PayoutRequest.trainer_id == actor.user_id)
        .order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
    )
    return list(db.scalars(stmt))
