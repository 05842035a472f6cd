"""ORM models package."""
from .api_key import ApiKey
from .audit import AuditLog
from .base import Base
from .identity_verification import IdentityVerification, VerificationStatus
from .lesson import Lesson, LessonStatus
from .payment import PAID_STATUSES, Payment, PaymentStatus, PayoutExclusionReason
from .payout_request import ACTIVE_PAYOUT_STATUSES, PayoutRequest, PayoutStatus
from .psp_webhook import PSPWebhookEvent
from .refund import Refund, RefundStatus
from .user import User, UserRole

__all__ = [
    "ACTIVE_PAYOUT_STATUSES",
    "ApiKey",
    "AuditLog",
    "Base",
    "IdentityVerification",
    "Lesson",
    "LessonStatus",
    "PAID_STATUSES",
    "Payment",
    "PaymentStatus",
    "PayoutExclusionReason",
    "PayoutRequest",
    "PayoutStatus",
    "PSPWebhookEvent",
    "Refund",
    "RefundStatus",
    "User",
    "UserRole",
    "VerificationStatus",
]
