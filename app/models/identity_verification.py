"""Trainer identity verification submissions."""
import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, value_enum


class VerificationStatus(str, enum.Enum):
    NOT_SUBMITTED = "not_submitted"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class IdentityVerification(Base):
    """One submission in a trainer's verification history (rows are never replaced)."""

    __tablename__ = "identity_verifications"
    __table_args__ = (
        Index("ix_identity_verifications_trainer_created", "trainer_id", "created_at"),
        Index("ix_identity_verifications_status", "status"),
    )

    trainer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[VerificationStatus] = mapped_column(
        value_enum(VerificationStatus, "verificationstatus"), nullable=False, default=VerificationStatus.PENDING
    )
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    document_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
