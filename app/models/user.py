"""User model."""
import enum

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, value_enum


class UserRole(str, enum.Enum):
    """Marketplace roles; only admins may decide approvals."""

    CLIENT = "client"
    TRAINER = "trainer"
    ADMIN = "admin"


class User(Base):
    """Represents a marketplace account (client, trainer or admin)."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(value_enum(UserRole, "userrole"), nullable=False, default=UserRole.CLIENT)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Connected account receiving payout transfers (trainers only).
    stripe_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
