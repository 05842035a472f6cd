"""Lesson, checkout and cancellation schemas."""
from datetime import date as date_type, datetime, time as time_type

from pydantic import BaseModel, ConfigDict, Field

from app.models.lesson import LessonStatus
from app.models.payment import PaymentStatus
from app.services.cancellation import CancellingParty, RefundReason


class LessonCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    price: int = Field(..., ge=0)
    date: date_type
    time: time_type


class LessonRead(BaseModel):
    id: int
    trainer_id: int
    title: str
    price: int
    date: date_type
    time: time_type
    status: LessonStatus

    model_config = ConfigDict(from_attributes=True)


class CheckoutRead(BaseModel):
    payment_id: int
    lesson_id: int
    amount: int
    status: PaymentStatus
    client_secret: str | None = None


class CancellationPayload(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)
    no_show: bool = False
    payer_id: int | None = None


class RefundDecisionRead(BaseModel):
    payment_id: int | None = None
    eligible: bool
    amount: int
    reason_code: RefundReason
    deadline: datetime
    message: str


class CancellationRead(BaseModel):
    lesson_id: int
    cancelled_by: CancellingParty
    decisions: list[RefundDecisionRead]
    refund_ids: list[int]
