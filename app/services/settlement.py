"""Settlement orchestrator: the entry points used by the booking flow, admins and webhooks.

Every state-changing call takes an explicit ``Actor``. Each operation commits
its own transaction and dispatches notifications only after the commit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.actor import SYSTEM_ACTOR, Actor
from app.models import (
    PAID_STATUSES,
    IdentityVerification,
    Lesson,
    LessonStatus,
    Payment,
    PaymentStatus,
    PayoutExclusionReason,
    PayoutRequest,
    PayoutStatus,
    Refund,
    RefundStatus,
    User,
    UserRole,
)
from app.services import payouts as payouts_service
from app.services.approvals import (
    IDENTITY_VERIFICATIONS,
    PAYOUTS,
    REFUNDS,
    ApprovalKind,
    Outcome,
    get_workflow,
)
from app.services.cancellation import (
    CancellingParty,
    RefundDecision,
    RefundReason,
    evaluate_cancellation_policy,
)
from app.services.eligibility import ensure_can_publish
from app.services.gateways import get_gateway
from app.services.ledger import DashboardStats, build_dashboard, month_window
from app.services.notifications import Notification, notify_all
from app.utils.audit import log_audit
from app.utils.errors import (
    DuplicateActiveRequest,
    Forbidden,
    InvalidTransition,
    NotFound,
    SettlementError,
    ValidationFailed,
)
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    payment: Payment
    client_secret: str | None = None


@dataclass
class CancellationOutcome:
    lesson_id: int
    cancelled_by: CancellingParty
    decisions: list[tuple[int, RefundDecision]] = field(default_factory=list)
    refunds: list[Refund] = field(default_factory=list)


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Only administrators may perform this action", code="ADMIN_REQUIRED")


def _get_lesson(db: Session, lesson_id: int) -> Lesson:
    lesson = db.get(Lesson, lesson_id)
    if lesson is None:
        raise NotFound(f"Lesson {lesson_id} not found", code="LESSON_NOT_FOUND")
    return lesson


def _paid_payments(db: Session, lesson_id: int, payer_id: int | None = None) -> list[Payment]:
    stmt = (
        select(Payment)
        .where(Payment.lesson_id == lesson_id)
        .where(Payment.status.in_(list(PAID_STATUSES)))
        .order_by(Payment.id)
        .execution_options(populate_existing=True)
    )
    if payer_id is not None:
        stmt = stmt.where(Payment.payer_id == payer_id)
    return list(db.scalars(stmt))


# --------------------------------------------------------------------------
# Lessons & checkout
# --------------------------------------------------------------------------


def publish_lesson(
    db: Session,
    actor: Actor,
    *,
    title: str,
    price: int,
    lesson_date: date,
    lesson_time: time,
) -> Lesson:
    """Create a lesson after re-checking the trainer's verification status."""

    ensure_can_publish(db, actor)
    if price < 0:
        raise ValidationFailed("Price must not be negative", code="PRICE_INVALID")
    lesson = Lesson(
        trainer_id=actor.user_id,
        title=title,
        price=price,
        date=lesson_date,
        time=lesson_time,
        status=LessonStatus.SCHEDULED,
    )
    db.add(lesson)
    db.flush()
    log_audit(
        db,
        actor=actor.audit_name,
        action="LESSON_PUBLISHED",
        entity="Lesson",
        entity_id=lesson.id,
        data={"price": price, "date": lesson_date.isoformat()},
    )
    db.commit()
    db.refresh(lesson)
    return lesson


def complete_lesson(db: Session, lesson_id: int, actor: Actor) -> Lesson:
    lesson = _get_lesson(db, lesson_id)
    if actor.user_id != lesson.trainer_id and not actor.is_admin:
        raise Forbidden("Only the lesson's trainer may complete it", code="LESSON_OWNER_REQUIRED")
    result = db.execute(
        update(Lesson)
        .where(Lesson.id == lesson_id, Lesson.status == LessonStatus.SCHEDULED)
        .values(status=LessonStatus.COMPLETED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.refresh(lesson)
        raise InvalidTransition(
            f"Lesson {lesson_id} is {lesson.status.value}", code="LESSON_NOT_SCHEDULED"
        )
    log_audit(db, actor=actor.audit_name, action="LESSON_COMPLETED", entity="Lesson", entity_id=lesson_id)
    db.commit()
    db.refresh(lesson)
    return lesson


def start_checkout(db: Session, lesson_id: int, actor: Actor) -> CheckoutSession:
    """Create (or reuse) the client's pending payment for a lesson."""

    lesson = _get_lesson(db, lesson_id)
    if actor.user_id is None or actor.role != UserRole.CLIENT:
        raise Forbidden("Only clients may book lessons", code="CLIENT_REQUIRED")
    if lesson.status != LessonStatus.SCHEDULED:
        raise InvalidTransition(f"Lesson {lesson_id} is {lesson.status.value}", code="LESSON_NOT_SCHEDULED")
    if _paid_payments(db, lesson_id, actor.user_id):
        raise DuplicateActiveRequest("Lesson already paid", code="LESSON_ALREADY_PAID")

    existing = db.scalars(
        select(Payment)
        .where(Payment.lesson_id == lesson_id, Payment.payer_id == actor.user_id)
        .where(Payment.status == PaymentStatus.PENDING)
        .limit(1)
    ).first()
    if existing is not None:
        logger.info("Reusing pending checkout", extra={"payment_id": existing.id})
        return CheckoutSession(payment=existing)

    payment = Payment(
        lesson_id=lesson_id,
        payer_id=actor.user_id,
        amount=lesson.price,
        status=PaymentStatus.PENDING,
    )
    db.add(payment)
    db.flush()
    result = get_gateway().start_checkout(lesson, payment)
    payment.psp_ref = result.reference
    log_audit(
        db,
        actor=actor.audit_name,
        action="CHECKOUT_STARTED",
        entity="Payment",
        entity_id=payment.id,
        data={"lesson_id": lesson_id, "amount": payment.amount, "psp_ref": payment.psp_ref},
    )
    db.commit()
    db.refresh(payment)
    return CheckoutSession(payment=payment, client_secret=result.client_secret)


# --------------------------------------------------------------------------
# Cancellation & refunds
# --------------------------------------------------------------------------


def _resolve_party(lesson: Lesson, actor: Actor, no_show: bool) -> CancellingParty:
    if actor.user_id is None:
        raise Forbidden("A user is required to cancel", code="USER_REQUIRED")
    is_trainer = actor.user_id == lesson.trainer_id
    if no_show:
        if not (is_trainer or actor.is_admin):
            raise Forbidden("Only the trainer may report a no-show", code="LESSON_OWNER_REQUIRED")
        return CancellingParty.CLIENT
    if is_trainer:
        return CancellingParty.TRAINER
    if actor.role != UserRole.CLIENT:
        raise Forbidden("Only the lesson's trainer or a participant may cancel", code="LESSON_PARTY_REQUIRED")
    return CancellingParty.CLIENT


def _decide_for(lesson: Lesson, payment: Payment, party: CancellingParty, now: datetime, no_show: bool) -> RefundDecision:
    return evaluate_cancellation_policy(
        lesson.date,
        lesson.time,
        now,
        party,
        payment.amount,
        payment.net_amount,
        no_show=no_show,
    )


def evaluate_cancellation(
    db: Session,
    lesson_id: int,
    actor: Actor,
    now: datetime,
    *,
    payer_id: int | None = None,
    no_show: bool = False,
) -> RefundDecision:
    """Preview the refund a cancellation would produce; never writes."""

    lesson = _get_lesson(db, lesson_id)
    party = _resolve_party(lesson, actor, no_show)
    if party == CancellingParty.CLIENT and not no_show:
        if payer_id is not None and payer_id != actor.user_id:
            raise Forbidden("Clients may only cancel their own booking", code="BOOKING_OWNER_REQUIRED")
        payer_id = actor.user_id
    elif payer_id is None:
        raise ValidationFailed("payer_id is required", code="PAYER_REQUIRED")

    payments = _paid_payments(db, lesson_id, payer_id)
    if not payments:
        raise NotFound("No paid booking for this lesson", code="PAYMENT_NOT_FOUND")
    return _decide_for(lesson, payments[-1], party, now, no_show)


def _live_refund(db: Session, payment_id: int) -> Refund | None:
    return db.scalars(
        select(Refund)
        .where(Refund.payment_id == payment_id, Refund.refund_status != RefundStatus.REJECTED)
        .limit(1)
    ).first()


def _open_refund(
    db: Session,
    payment: Payment,
    decision: RefundDecision,
    party: CancellingParty,
    actor: Actor,
    reason: str | None,
) -> Refund:
    """Create the pending refund and pull the payment out of payout eligibility together."""

    live = _live_refund(db, payment.id)
    if live is not None:
        raise DuplicateActiveRequest(
            "A refund already exists for this payment",
            code="REFUND_EXISTS",
            details={"refund_id": live.id},
        )

    exclusion = (
        PayoutExclusionReason.TRAINER_CANCELLED if party == CancellingParty.TRAINER else PayoutExclusionReason.REFUND
    )
    result = db.execute(
        update(Payment)
        .where(Payment.id == payment.id)
        .where(Payment.payout_request_id.is_(None))
        .values(payout_excluded=True, payout_excluded_reason=exclusion)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidTransition(
            "Payment is already part of a trainer payout",
            code="PAYMENT_ALREADY_CLAIMED",
            details={"payment_id": payment.id},
        )

    refund = Refund(
        payment_id=payment.id,
        requested_amount=payment.amount,
        refund_amount=decision.amount,
        reason=reason,
        cancelled_by=party.value,
        reason_code=decision.reason_code.value,
    )
    return REFUNDS.submit(db, refund, actor=actor)


def _take_over_refund(db: Session, refund: Refund, decision: RefundDecision, actor: Actor) -> Refund:
    """Re-attribute a client's pending refund to the trainer cancellation."""

    previous = refund.reason_code
    refund.cancelled_by = CancellingParty.TRAINER.value
    refund.reason_code = decision.reason_code.value
    refund.refund_amount = decision.amount
    log_audit(
        db,
        actor=actor.audit_name,
        action="REFUND_REATTRIBUTED",
        entity="Refund",
        entity_id=refund.id,
        data={"previous_reason_code": previous, "reason_code": refund.reason_code},
    )
    return refund


def cancel_lesson(
    db: Session,
    lesson_id: int,
    actor: Actor,
    now: datetime,
    *,
    reason: str | None = None,
    no_show: bool = False,
    payer_id: int | None = None,
) -> CancellationOutcome:
    """Cancel a booking (client) or the whole lesson (trainer).

    Eligible decisions with a positive amount open a pending refund; a trainer
    cancellation also removes every payment from payout eligibility.
    """

    lesson = _get_lesson(db, lesson_id)
    party = _resolve_party(lesson, actor, no_show)
    if lesson.status != LessonStatus.SCHEDULED and not no_show:
        raise InvalidTransition(f"Lesson {lesson_id} is {lesson.status.value}", code="LESSON_NOT_SCHEDULED")

    if party == CancellingParty.TRAINER:
        payments = _paid_payments(db, lesson_id)
    elif no_show:
        if payer_id is None:
            raise ValidationFailed("payer_id is required", code="PAYER_REQUIRED")
        payments = _paid_payments(db, lesson_id, payer_id)
    else:
        payments = _paid_payments(db, lesson_id, actor.user_id)
        if not payments:
            raise NotFound("No paid booking for this lesson", code="PAYMENT_NOT_FOUND")

    outcome = CancellationOutcome(lesson_id=lesson_id, cancelled_by=party)
    for payment in payments:
        decision = _decide_for(lesson, payment, party, now, no_show)
        outcome.decisions.append((payment.id, decision))
        live = _live_refund(db, payment.id) if party == CancellingParty.TRAINER else None
        if live is not None and live.refund_status == RefundStatus.PENDING:
            outcome.refunds.append(_take_over_refund(db, live, decision, actor))
        if decision.eligible and decision.amount > 0 and live is None:
            outcome.refunds.append(_open_refund(db, payment, decision, party, actor, reason))
        elif party == CancellingParty.TRAINER:
            db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.payout_request_id.is_(None))
                .values(payout_excluded=True, payout_excluded_reason=PayoutExclusionReason.TRAINER_CANCELLED)
                .execution_options(synchronize_session=False)
            )

    if party == CancellingParty.TRAINER:
        lesson.status = LessonStatus.CANCELLED
    log_audit(
        db,
        actor=actor.audit_name,
        action="LESSON_CANCELLED" if party == CancellingParty.TRAINER else "BOOKING_CANCELLED",
        entity="Lesson",
        entity_id=lesson_id,
        data={
            "cancelled_by": party.value,
            "no_show": no_show,
            "refund_ids": [refund.id for refund in outcome.refunds],
        },
    )
    db.commit()
    for refund in outcome.refunds:
        db.refresh(refund)
    logger.info(
        "Cancellation processed",
        extra={"lesson_id": lesson_id, "cancelled_by": party.value, "refunds": len(outcome.refunds)},
    )
    return outcome


# --------------------------------------------------------------------------
# Payout requests & verifications
# --------------------------------------------------------------------------


def submit_payout_request(db: Session, trainer_id: int, actor: Actor, now: datetime | None = None) -> PayoutRequest:
    request = payouts_service.create_payout_request(db, trainer_id, actor, now or utcnow())
    db.commit()
    db.refresh(request)
    return request


def submit_identity_verification(
    db: Session,
    actor: Actor,
    *,
    document_type: str,
    document_url: str,
) -> IdentityVerification:
    """Append a new submission; earlier rows stay untouched as history."""

    if not actor.is_trainer or actor.user_id is None:
        raise Forbidden("Only trainers submit identity verification", code="TRAINER_REQUIRED")
    verification = IdentityVerification(
        trainer_id=actor.user_id,
        document_type=document_type,
        document_url=document_url,
    )
    IDENTITY_VERIFICATIONS.submit(db, verification, actor=actor)
    db.commit()
    db.refresh(verification)
    return verification


# --------------------------------------------------------------------------
# Admin decisions & transfers
# --------------------------------------------------------------------------


def decide(
    db: Session,
    kind: ApprovalKind | str,
    entity_id: int,
    outcome: Outcome | str,
    actor: Actor,
    note: str | None = None,
):
    """Admin approval/rejection for any of the three workflows."""

    workflow = get_workflow(kind)
    if workflow.kind == ApprovalKind.REFUND and outcome == Outcome.REJECTED:
        _require_admin(actor)
        pending = db.get(Refund, entity_id)
        if pending is not None and pending.reason_code == RefundReason.TRAINER_CANCELLED.value:
            raise InvalidTransition(
                "Refunds for trainer-cancelled lessons cannot be rejected",
                code="TRAINER_REFUND_REQUIRED",
                details={"refund_id": entity_id},
            )
    entity = workflow.decide(db, entity_id, outcome, actor, note=note)
    outcome = Outcome(outcome)
    notifications: list[Notification] = []

    if workflow.kind == ApprovalKind.REFUND:
        payment = db.get(Payment, entity.payment_id, populate_existing=True)
        if outcome == Outcome.APPROVED:
            if entity.refund_amount > 0:
                try:
                    result = get_gateway().refund(payment, entity.refund_amount, f"refund:{entity.id}")
                except SettlementError:
                    db.rollback()
                    raise
                entity.processor_ref = result.reference
        elif payment.payout_excluded_reason == PayoutExclusionReason.REFUND:
            payment.payout_excluded = False
            payment.payout_excluded_reason = None
        notifications.append(
            Notification(
                event=f"refund.{outcome.value}",
                recipient_id=payment.payer_id,
                payload={"refund_id": entity.id, "refund_amount": entity.refund_amount},
            )
        )
    elif workflow.kind == ApprovalKind.PAYOUT:
        if outcome == Outcome.REJECTED:
            released = payouts_service.release_claimed_payments(db, entity.id)
            logger.info("Payout claims released", extra={"payout_request_id": entity.id, "payments": released})
        notifications.append(
            Notification(
                event=f"payout.{outcome.value}",
                recipient_id=entity.trainer_id,
                payload={"payout_request_id": entity.id, "net_payout": entity.net_payout},
            )
        )
    else:
        notifications.append(
            Notification(
                event=f"identity_verification.{outcome.value}",
                recipient_id=entity.trainer_id,
                payload={"verification_id": entity.id},
            )
        )

    db.commit()
    db.refresh(entity)
    notify_all(notifications)
    return entity


def initiate_payout_transfer(db: Session, payout_id: int, actor: Actor) -> PayoutRequest:
    """Ask the transfer service to move an approved payout; settlement arrives later."""

    _require_admin(actor)
    payout = PAYOUTS.get(db, payout_id)
    if payout.status != PayoutStatus.APPROVED:
        raise InvalidTransition(
            f"PayoutRequest {payout_id} is {payout.status.value}, not approved",
            details={"status": payout.status.value},
        )
    trainer = db.get(User, payout.trainer_id)
    result = get_gateway().transfer(
        trainer_id=payout.trainer_id,
        net_payout=payout.net_payout,
        idempotency_key=f"payout:{payout.id}",
        destination=getattr(trainer, "stripe_account_id", None),
    )
    payout.transfer_ref = result.reference
    log_audit(
        db,
        actor=actor.audit_name,
        action="PAYOUT_TRANSFER_INITIATED",
        entity="PayoutRequest",
        entity_id=payout.id,
        data={"net_payout": payout.net_payout, "transfer_ref": result.reference},
    )
    db.commit()
    db.refresh(payout)
    return payout


def confirm_payout_transfer(
    db: Session,
    payout_id: int,
    *,
    succeeded: bool,
    actor: Actor = SYSTEM_ACTOR,
    reference: str | None = None,
) -> PayoutRequest:
    """Apply the transfer service's result. Duplicate success confirmations are no-ops."""

    notifications: list[Notification] = []
    if succeeded:
        settled = PAYOUTS.mark_settled(db, payout_id, actor=actor, reference=reference)
        payout = settled.entity
        if settled.changed:
            notifications.append(
                Notification(
                    event="payout.paid",
                    recipient_id=payout.trainer_id,
                    payload={"payout_request_id": payout.id, "net_payout": payout.net_payout},
                )
            )
    else:
        payout = PAYOUTS.get(db, payout_id)
        if payout.status == PayoutStatus.PAID:
            raise InvalidTransition(
                f"PayoutRequest {payout_id} is already paid", details={"status": payout.status.value}
            )
        log_audit(
            db,
            actor=actor.audit_name,
            action="PAYOUT_TRANSFER_FAILED",
            entity="PayoutRequest",
            entity_id=payout.id,
            data={"status": payout.status.value, "transfer_ref": reference},
        )
        logger.warning("Payout transfer failed", extra={"payout_request_id": payout.id})
        notifications.append(
            Notification(
                event="payout.transfer_failed",
                recipient_id=payout.trainer_id,
                payload={"payout_request_id": payout.id},
            )
        )
    db.commit()
    db.refresh(payout)
    notify_all(notifications)
    return payout


# --------------------------------------------------------------------------
# Dashboard
# --------------------------------------------------------------------------


def _count_active(db: Session, role: UserRole) -> int:
    stmt = select(func.count()).select_from(User).where(User.role == role, User.is_active.is_(True))
    return int(db.scalar(stmt) or 0)


def compute_dashboard(
    db: Session,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
    now: datetime | None = None,
) -> DashboardStats:
    """Windowed and all-time totals plus all-time pending counts.

    Without an explicit window the current local calendar month is used.
    """

    if window_start is None or window_end is None:
        month_start, next_month_start = month_window(now or utcnow())
        window_start = window_start or month_start
        window_end = window_end or next_month_start
    window_start, window_end = ensure_utc(window_start), ensure_utc(window_end)
    if window_end <= window_start:
        raise ValidationFailed("window_end must be after window_start", code="WINDOW_INVALID")

    return build_dashboard(
        window_start=window_start,
        window_end=window_end,
        payments=db.scalars(select(Payment)),
        refunds=db.scalars(select(Refund)),
        payouts=db.scalars(select(PayoutRequest)),
        pending_refunds=REFUNDS.count_pending(db),
        pending_payouts=PAYOUTS.count_pending(db),
        pending_identity_verifications=IDENTITY_VERIFICATIONS.count_pending(db),
        active_trainers=_count_active(db, UserRole.TRAINER),
        active_clients=_count_active(db, UserRole.CLIENT),
    )


__all__ = [
    "CancellationOutcome",
    "CheckoutSession",
    "cancel_lesson",
    "complete_lesson",
    "compute_dashboard",
    "confirm_payout_transfer",
    "decide",
    "evaluate_cancellation",
    "initiate_payout_transfer",
    "publish_lesson",
    "start_checkout",
    "submit_identity_verification",
    "submit_payout_request",
]
