"""Processor webhook de-duplication ledger."""
from datetime import datetime

from sqlalchemy import DateTime, Index, JSON, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PSPWebhookEvent(Base):
    """One accepted processor or transfer notification.

    ``event_id`` is the delivery's de-duplication key (``payment:<id>:<status>`` or
    ``payout:<id>:<status>``, suffixed with the transfer reference for failed
    payouts); a redelivery collides on ``(provider, event_id)``.
    """

    __tablename__ = "psp_webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_psp_webhook_events_provider_event_id"),
        Index("ix_psp_webhook_events_received", "received_at"),
        Index("ix_psp_webhook_events_kind", "kind"),
    )

    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="default")
    event_id: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    psp_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    raw_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
