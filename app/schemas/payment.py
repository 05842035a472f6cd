"""Schemas for payment and refund entities."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models.payment import PaymentStatus, PayoutExclusionReason
from app.models.refund import RefundStatus


class PaymentRead(BaseModel):
    id: int
    lesson_id: int
    payer_id: int
    amount: int
    net_amount: int | None
    status: PaymentStatus
    paid_at: datetime | None
    payout_request_id: int | None
    payout_excluded: bool
    payout_excluded_reason: PayoutExclusionReason | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RefundRead(BaseModel):
    id: int
    payment_id: int
    requested_amount: int
    refund_amount: int
    refund_status: RefundStatus
    reason_code: str
    cancelled_by: str
    decided_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
