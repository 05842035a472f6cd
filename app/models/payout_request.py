"""Trainer payout request model."""
import enum
from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, value_enum


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


ACTIVE_PAYOUT_STATUSES: frozenset[PayoutStatus] = frozenset({PayoutStatus.PENDING, PayoutStatus.APPROVED})


class PayoutRequest(Base):
    """A trainer's request to be paid their accumulated lesson share.

    ``net_payout`` is fixed at creation time and never recomputed.
    """

    __tablename__ = "payout_requests"
    __table_args__ = (
        CheckConstraint("gross_eligible_amount > 0", name="ck_payout_gross_positive"),
        CheckConstraint("net_payout = gross_eligible_amount - transfer_fee", name="ck_payout_net_formula"),
        Index("ix_payout_requests_created_at", "created_at"),
        Index("ix_payout_requests_status", "status"),
        Index(
            "uq_payout_requests_active_trainer",
            "trainer_id",
            unique=True,
            sqlite_where=text("status IN ('pending', 'approved')"),
            postgresql_where=text("status IN ('pending', 'approved')"),
        ),
    )

    trainer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    total_sales: Mapped[int] = mapped_column(Integer, nullable=False)
    gross_eligible_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    transfer_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    net_payout: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PayoutStatus] = mapped_column(
        value_enum(PayoutStatus, "payoutstatus"), nullable=False, default=PayoutStatus.PENDING
    )
    payout_eligible_date: Mapped[date] = mapped_column(Date, nullable=False)
    transfer_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    decided_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
