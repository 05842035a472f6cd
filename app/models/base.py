"""Declarative base shared by every ORM model."""
import enum
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum as SqlEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def value_enum(enum_cls: type[enum.Enum], name: str) -> SqlEnum:
    """Enum column type persisting member values (``"pending"``) instead of names."""

    return SqlEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class Base(DeclarativeBase):
    """Base class carrying the surrogate key and row timestamps."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
