"""Back-office schemas: decisions and the financial dashboard."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.services.approvals import Outcome


class DecisionPayload(BaseModel):
    outcome: Outcome
    note: str | None = None


class DecisionRead(BaseModel):
    kind: str
    id: int
    status: str


class TransferConfirmation(BaseModel):
    succeeded: bool
    transfer_ref: str | None = None


class LedgerTotalsRead(BaseModel):
    lesson_count: int
    gross_revenue: int
    fee_revenue: int
    refund_total: int
    payout_total: int
    negative_fee_count: int
    anomalies: int

    model_config = ConfigDict(from_attributes=True)


class DashboardRead(BaseModel):
    window_start: datetime
    window_end: datetime
    window: LedgerTotalsRead
    all_time: LedgerTotalsRead
    pending_refunds: int
    pending_payouts: int
    pending_identity_verifications: int
    active_trainers: int
    active_clients: int

    model_config = ConfigDict(from_attributes=True)
