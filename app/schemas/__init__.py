"""Schema package exports."""
from .admin import DashboardRead, DecisionPayload, DecisionRead, LedgerTotalsRead, TransferConfirmation
from .lesson import (
    CancellationPayload,
    CancellationRead,
    CheckoutRead,
    LessonCreate,
    LessonRead,
    RefundDecisionRead,
)
from .payment import PaymentRead, RefundRead
from .payout import PayoutQuoteRead, PayoutRequestRead
from .user import UserCreate, UserRead
from .verification import EligibilityRead, VerificationCreate, VerificationRead

__all__ = [
    "CancellationPayload",
    "CancellationRead",
    "CheckoutRead",
    "DashboardRead",
    "DecisionPayload",
    "DecisionRead",
    "EligibilityRead",
    "LedgerTotalsRead",
    "LessonCreate",
    "LessonRead",
    "PaymentRead",
    "PayoutQuoteRead",
    "PayoutRequestRead",
    "RefundDecisionRead",
    "RefundRead",
    "TransferConfirmation",
    "UserCreate",
    "UserRead",
    "VerificationCreate",
    "VerificationRead",
]
