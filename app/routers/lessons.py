"""Lesson publication, checkout and cancellation endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.actor import Actor
from app.db import get_db
from app.models.lesson import Lesson
from app.models.payment import Payment
from app.schemas.lesson import (
    CancellationPayload,
    CancellationRead,
    CheckoutRead,
    LessonCreate,
    LessonRead,
    RefundDecisionRead,
)
from app.schemas.payment import PaymentRead
from app.security import require_actor
from app.services import settlement
from app.services.cancellation import RefundDecision, cancellation_message
from app.utils.errors import error_response
from app.utils.time import utcnow

router = APIRouter(prefix="/lessons", tags=["lessons"])


def _decision_read(decision: RefundDecision, payment_id: int | None = None) -> RefundDecisionRead:
    return RefundDecisionRead(
        payment_id=payment_id,
        eligible=decision.eligible,
        amount=decision.amount,
        reason_code=decision.reason_code,
        deadline=decision.deadline,
        message=cancellation_message(decision),
    )


@router.post("", response_model=LessonRead, status_code=status.HTTP_201_CREATED)
def create_lesson(
    payload: LessonCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Lesson:
    """Publish a lesson; blocked until the trainer's identity is approved."""

    return settlement.publish_lesson(
        db,
        actor,
        title=payload.title,
        price=payload.price,
        lesson_date=payload.date,
        lesson_time=payload.time,
    )


@router.get("/{lesson_id}", response_model=LessonRead)
def get_lesson(
    lesson_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Lesson:
    lesson = db.get(Lesson, lesson_id)
    if lesson is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("LESSON_NOT_FOUND", "Lesson not found."),
        )
    return lesson


@router.get("/{lesson_id}/payments", response_model=list[PaymentRead])
def list_lesson_payments(
    lesson_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> list[Payment]:
    lesson = get_lesson(lesson_id, db, actor)
    if not actor.is_admin and lesson.trainer_id != actor.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("NOT_LESSON_TRAINER", "Only the lesson trainer can list its payments."),
        )
    stmt = select(Payment).where(Payment.lesson_id == lesson.id).order_by(Payment.id)
    return list(db.scalars(stmt))


@router.post("/{lesson_id}/checkout", response_model=CheckoutRead, status_code=status.HTTP_201_CREATED)
def checkout(
    lesson_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> CheckoutRead:
    session = settlement.start_checkout(db, lesson_id, actor)
    return CheckoutRead(
        payment_id=session.payment.id,
        lesson_id=session.payment.lesson_id,
        amount=session.payment.amount,
        status=session.payment.status,
        client_secret=session.client_secret,
    )


@router.post("/{lesson_id}/cancellation-preview", response_model=RefundDecisionRead)
def cancellation_preview(
    lesson_id: int,
    payload: CancellationPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> RefundDecisionRead:
    decision = settlement.evaluate_cancellation(
        db,
        lesson_id,
        actor,
        utcnow(),
        payer_id=payload.payer_id,
        no_show=payload.no_show,
    )
    return _decision_read(decision)


@router.post("/{lesson_id}/cancel", response_model=CancellationRead)
def cancel(
    lesson_id: int,
    payload: CancellationPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> CancellationRead:
    outcome = settlement.cancel_lesson(
        db,
        lesson_id,
        actor,
        utcnow(),
        reason=payload.reason,
        no_show=payload.no_show,
        payer_id=payload.payer_id,
    )
    return CancellationRead(
        lesson_id=outcome.lesson_id,
        cancelled_by=outcome.cancelled_by,
        decisions=[_decision_read(decision, payment_id) for payment_id, decision in outcome.decisions],
        refund_ids=[refund.id for refund in outcome.refunds],
    )


@router.post("/{lesson_id}/complete", response_model=LessonRead)
def complete(
    lesson_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Lesson:
    return settlement.complete_lesson(db, lesson_id, actor)
