"""Cancellation policy: decides whether a cancelled booking is refunded."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from app.utils.money import refundable_amount
from app.utils.time import local_zone

DEADLINE_TIME = time(23, 59, 59)


class CancellingParty(str, enum.Enum):
    CLIENT = "client"
    TRAINER = "trainer"


class RefundReason(str, enum.Enum):
    CLIENT_BEFORE_DEADLINE = "CLIENT_BEFORE_DEADLINE"
    CLIENT_AFTER_DEADLINE = "CLIENT_AFTER_DEADLINE"
    CLIENT_NO_SHOW = "CLIENT_NO_SHOW"
    TRAINER_CANCELLED = "TRAINER_CANCELLED"


_MESSAGES = {
    RefundReason.CLIENT_BEFORE_DEADLINE: (
        "Cancelled by the participant before the deadline. The amount after the "
        "payment processing fee will be refunded once an administrator approves it."
    ),
    RefundReason.CLIENT_AFTER_DEADLINE: (
        "Cancelled by the participant after 23:59:59 on the day before the lesson; "
        "no refund is issued."
    ),
    RefundReason.CLIENT_NO_SHOW: "The participant did not attend; no refund is issued.",
    RefundReason.TRAINER_CANCELLED: (
        "Cancelled by the trainer. The amount after the payment processing fee will "
        "be refunded once an administrator approves it."
    ),
}


@dataclass(frozen=True)
class RefundDecision:
    eligible: bool
    amount: int
    reason_code: RefundReason
    deadline: datetime


def cancellation_deadline(lesson_date: date, tz: tzinfo) -> datetime:
    """23:59:59 local time on the calendar day before ``lesson_date``."""

    return datetime.combine(lesson_date - timedelta(days=1), DEADLINE_TIME, tzinfo=tz)


def evaluate_cancellation_policy(
    lesson_date: date,
    lesson_time: time,
    cancelled_at: datetime,
    cancelled_by: CancellingParty,
    amount: int,
    net_amount: int | None,
    *,
    no_show: bool = False,
    tz: tzinfo | None = None,
) -> RefundDecision:
    """Pure refund decision for one paid booking.

    ``lesson_time`` does not move the deadline; it is accepted so callers pass
    the full lesson slot. A naive ``cancelled_at`` is read as local time.
    Raises ``InconsistentRecord`` when the payment amounts are malformed.
    """

    zone = tz or local_zone()
    deadline = cancellation_deadline(lesson_date, zone)
    if cancelled_at.tzinfo is None:
        local_cancel = cancelled_at.replace(tzinfo=zone)
    else:
        local_cancel = cancelled_at.astimezone(zone)
    local_cancel = local_cancel.replace(microsecond=0)

    if cancelled_by == CancellingParty.TRAINER:
        return RefundDecision(
            eligible=True,
            amount=refundable_amount(amount, net_amount),
            reason_code=RefundReason.TRAINER_CANCELLED,
            deadline=deadline,
        )

    if no_show:
        return RefundDecision(False, 0, RefundReason.CLIENT_NO_SHOW, deadline)

    if local_cancel <= deadline:
        return RefundDecision(
            eligible=True,
            amount=refundable_amount(amount, net_amount),
            reason_code=RefundReason.CLIENT_BEFORE_DEADLINE,
            deadline=deadline,
        )
    return RefundDecision(False, 0, RefundReason.CLIENT_AFTER_DEADLINE, deadline)


def cancellation_message(decision: RefundDecision) -> str:
    return _MESSAGES[decision.reason_code]


__all__ = [
    "CancellingParty",
    "RefundDecision",
    "RefundReason",
    "cancellation_deadline",
    "cancellation_message",
    "evaluate_cancellation_policy",
]
