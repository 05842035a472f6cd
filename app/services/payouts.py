"""Trainer payout eligibility and request construction."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, tzinfo

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.actor import Actor
from app.models import (
    PAID_STATUSES,
    Lesson,
    LessonStatus,
    Payment,
    PayoutRequest,
    PayoutStatus,
)
from app.services.approvals import PAYOUTS
from app.services.ledger import month_window
from app.utils.errors import Forbidden, InvalidTransition, ValidationFailed
from app.utils.money import TRANSFER_FEE, net_payout, trainer_share
from app.utils.time import add_business_days, local_zone

logger = logging.getLogger(__name__)

PAYOUT_BUSINESS_DAYS = 10


@dataclass(frozen=True)
class PayoutQuote:
    trainer_id: int
    payment_ids: tuple[int, ...]
    total_sales: int
    gross_eligible_amount: int
    transfer_fee: int
    payout_eligible_date: date

    @property
    def net_payout(self) -> int:
        return net_payout(self.gross_eligible_amount, self.transfer_fee)


def payout_eligible_date(now: datetime, tz: tzinfo | None = None) -> date:
    """The 10th business day after the first of ``now``'s local month."""

    zone = tz or local_zone()
    month_start, _ = month_window(now, zone)
    return add_business_days(month_start.astimezone(zone).date(), PAYOUT_BUSINESS_DAYS)


def eligible_payments(db: Session, trainer_id: int, now: datetime, tz: tzinfo | None = None) -> list[Payment]:
    """Paid, unclaimed, non-excluded payments of completed lessons paid before this month."""

    cutoff, _ = month_window(now, tz)
    stmt = (
        select(Payment)
        .join(Lesson, Payment.lesson_id == Lesson.id)
        .where(Lesson.trainer_id == trainer_id)
        .where(Lesson.status == LessonStatus.COMPLETED)
        .where(Payment.status.in_(list(PAID_STATUSES)))
        .where(Payment.paid_at.is_not(None))
        .where(Payment.paid_at < cutoff)
        .where(Payment.payout_excluded.is_(False))
        .where(Payment.payout_request_id.is_(None))
        .order_by(Payment.id)
    )
    return list(db.scalars(stmt))


def quote_payout(db: Session, trainer_id: int, now: datetime, tz: tzinfo | None = None) -> PayoutQuote:
    """Sum the trainer share of every eligible payment.

    A malformed payment raises ``InconsistentRecord`` and aborts the quote.
    """

    payments = eligible_payments(db, trainer_id, now, tz)
    return PayoutQuote(
        trainer_id=trainer_id,
        payment_ids=tuple(p.id for p in payments),
        total_sales=sum(p.amount for p in payments),
        gross_eligible_amount=sum(trainer_share(p.net_amount) for p in payments),
        transfer_fee=TRANSFER_FEE,
        payout_eligible_date=payout_eligible_date(now, tz),
    )


def create_payout_request(db: Session, trainer_id: int, actor: Actor, now: datetime) -> PayoutRequest:
    """Build, submit and claim; the caller commits."""

    if actor.user_id != trainer_id or not actor.is_trainer:
        raise Forbidden("Trainers may only request their own payouts", code="PAYOUT_OWNER_REQUIRED")

    PAYOUTS.ensure_no_active(db, trainer_id)
    quote = quote_payout(db, trainer_id, now)
    if not quote.payment_ids:
        raise ValidationFailed("No eligible sales to pay out", code="NOTHING_TO_PAY_OUT")
    if quote.gross_eligible_amount <= quote.transfer_fee:
        raise ValidationFailed(
            "Eligible amount does not exceed the transfer fee",
            code="PAYOUT_BELOW_TRANSFER_FEE",
            details={"gross_eligible_amount": quote.gross_eligible_amount, "transfer_fee": quote.transfer_fee},
        )

    request = PayoutRequest(
        trainer_id=trainer_id,
        total_sales=quote.total_sales,
        gross_eligible_amount=quote.gross_eligible_amount,
        transfer_fee=quote.transfer_fee,
        net_payout=quote.net_payout,
        status=PayoutStatus.PENDING,
        payout_eligible_date=quote.payout_eligible_date,
    )
    PAYOUTS.submit(db, request, actor=actor)

    result = db.execute(
        update(Payment)
        .where(Payment.id.in_(quote.payment_ids))
        .where(Payment.payout_request_id.is_(None))
        .where(Payment.payout_excluded.is_(False))
        .values(payout_request_id=request.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(quote.payment_ids):
        db.rollback()
        logger.warning(
            "Eligible payments changed while creating payout request",
            extra={"trainer_id": trainer_id, "expected": len(quote.payment_ids), "claimed": result.rowcount},
        )
        raise InvalidTransition("Eligible payments changed; retry the request", code="PAYMENTS_CHANGED")

    logger.info(
        "Payout request created",
        extra={"payout_request_id": request.id, "trainer_id": trainer_id, "net_payout": request.net_payout},
    )
    return request


def release_claimed_payments(db: Session, payout_request_id: int) -> int:
    """Return a rejected request's payments to the eligible pool."""

    result = db.execute(
        update(Payment)
        .where(Payment.payout_request_id == payout_request_id)
        .values(payout_request_id=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


__all__ = [
    "PAYOUT_BUSINESS_DAYS",
    "PayoutQuote",
    "create_payout_request",
    "eligible_payments",
    "payout_eligible_date",
    "quote_payout",
    "release_claimed_payments",
]
