"""Refund model definitions."""
import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, value_enum


class RefundStatus(str, enum.Enum):
    PENDING = "pending"
    REFUNDED = "refunded"
    REJECTED = "rejected"


class Refund(Base):
    """A refund request raised by a lesson cancellation, awaiting admin decision."""

    __tablename__ = "refunds"
    __table_args__ = (
        CheckConstraint("refund_amount >= 0", name="ck_refund_amount_non_negative"),
        Index("ix_refunds_created_at", "created_at"),
        Index("ix_refunds_status", "refund_status"),
        # At most one live (non-rejected) refund per payment.
        Index(
            "uq_refunds_live_payment",
            "payment_id",
            unique=True,
            sqlite_where=text("refund_status != 'rejected'"),
            postgresql_where=text("refund_status != 'rejected'"),
        ),
    )

    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False, index=True)
    requested_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    refund_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    refund_status: Mapped[RefundStatus] = mapped_column(
        value_enum(RefundStatus, "refundstatus"), nullable=False, default=RefundStatus.PENDING
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str] = mapped_column(String(20), nullable=False)
    reason_code: Mapped[str] = mapped_column(String(50), nullable=False)
    processor_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    decided_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment = relationship("Payment", back_populates="refunds")
