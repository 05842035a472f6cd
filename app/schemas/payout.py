"""Payout request schemas."""
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from app.models.payout_request import PayoutStatus


class PayoutRequestRead(BaseModel):
    id: int
    trainer_id: int
    total_sales: int
    gross_eligible_amount: int
    transfer_fee: int
    net_payout: int
    status: PayoutStatus
    payout_eligible_date: date
    decided_at: datetime | None
    paid_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PayoutQuoteRead(BaseModel):
    trainer_id: int
    payment_count: int
    total_sales: int
    gross_eligible_amount: int
    transfer_fee: int
    net_payout: int
    payout_eligible_date: date
