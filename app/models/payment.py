"""Payment model definitions."""
import enum
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, value_enum


class PaymentStatus(str, enum.Enum):
    """Lifecycle of a lesson payment as reported by the processor."""

    PENDING = "pending"
    PAID = "paid"
    SUCCEEDED = "succeeded"
    COMPLETED = "completed"
    PAID_OUT = "paid_out"
    FAILED = "failed"


# Statuses meaning the client's money was captured.
PAID_STATUSES: frozenset[PaymentStatus] = frozenset(
    {PaymentStatus.PAID, PaymentStatus.SUCCEEDED, PaymentStatus.COMPLETED, PaymentStatus.PAID_OUT}
)


class PayoutExclusionReason(str, enum.Enum):
    REFUND = "refund"
    TRAINER_CANCELLED = "trainer_cancelled"


class Payment(Base):
    """A client's payment for one lesson.

    ``amount`` is the gross charge and ``net_amount`` what the processor credited
    after its fee. Both are integer currency units.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
        CheckConstraint(
            "net_amount IS NULL OR (net_amount >= 0 AND net_amount <= amount)",
            name="ck_payment_net_within_amount",
        ),
        Index("ix_payments_created_at", "created_at"),
        Index("ix_payments_status", "status"),
        Index("ix_payments_lesson_payer", "lesson_id", "payer_id"),
    )

    lesson_id: Mapped[int] = mapped_column(ForeignKey("lessons.id"), nullable=False, index=True)
    payer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    net_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(
        value_enum(PaymentStatus, "paymentstatus"), nullable=False, default=PaymentStatus.PENDING
    )
    psp_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Downstream linkage; the only columns allowed to change once paid.
    payout_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("payout_requests.id"), nullable=True, index=True
    )
    payout_excluded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_excluded_reason: Mapped[PayoutExclusionReason | None] = mapped_column(
        value_enum(PayoutExclusionReason, "payoutexclusionreason"), nullable=True
    )

    lesson = relationship("Lesson", back_populates="payments")
    refunds = relationship("Refund", back_populates="payment")

    @property
    def is_paid(self) -> bool:
        return self.status in PAID_STATUSES
