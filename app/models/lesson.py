"""Lesson model."""
import enum
from datetime import date as date_type, time as time_type

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, value_enum


class LessonStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Lesson(Base):
    """A bookable session published by a trainer.

    ``date`` and ``time`` are wall-clock values in the platform's local time zone.
    """

    __tablename__ = "lessons"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_lesson_price_non_negative"),
        Index("ix_lessons_trainer_status", "trainer_id", "status"),
    )

    trainer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    time: Mapped[time_type] = mapped_column(Time, nullable=False)
    status: Mapped[LessonStatus] = mapped_column(
        value_enum(LessonStatus, "lessonstatus"), nullable=False, default=LessonStatus.SCHEDULED
    )

    trainer = relationship("User")
    payments = relationship("Payment", back_populates="lesson")
