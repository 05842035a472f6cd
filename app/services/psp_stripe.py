"""Stripe SDK wrapper for lesson checkout, refunds and trainer transfers."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

import stripe

from app.config import Settings, get_settings

if TYPE_CHECKING:  # pragma: no cover - hints only
    from app.models import Lesson, Payment


class StripeClient:
    """Wrapper around the Stripe Python SDK to isolate PSP concerns.

    Amounts are passed through unchanged: the platform currency has no minor unit.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._ensure_enabled()
        self._secret_key = settings.STRIPE_SECRET_KEY
        self._currency = settings.STRIPE_CURRENCY

        if not self._secret_key:
            raise RuntimeError("Stripe secret key is missing; configure STRIPE_SECRET_KEY.")

        stripe.api_key = self._secret_key

    @classmethod
    def from_env(cls) -> "StripeClient":
        """Instantiate a client using the cached application settings."""

        return cls(get_settings())

    def _ensure_enabled(self) -> None:
        if not self.settings.STRIPE_ENABLED:
            raise RuntimeError("Stripe integration is disabled; enable STRIPE_ENABLED to proceed.")

    def create_lesson_payment_intent(self, lesson: "Lesson", payment: "Payment") -> stripe.PaymentIntent:
        """Create the PaymentIntent a client confirms at checkout."""

        metadata: Dict[str, Any] = {
            "payment_id": str(payment.id),
            "lesson_id": str(lesson.id),
            "payer_id": str(payment.payer_id),
        }
        return stripe.PaymentIntent.create(
            amount=payment.amount,
            currency=self._currency,
            metadata=metadata,
            idempotency_key=f"checkout:{payment.id}",
        )

    def create_refund(self, *, payment_intent_id: str, amount: int, idempotency_key: str) -> stripe.Refund:
        return stripe.Refund.create(
            payment_intent=payment_intent_id,
            amount=amount,
            idempotency_key=idempotency_key,
        )

    def create_transfer(
        self,
        *,
        destination_account_id: str,
        amount: int,
        idempotency_key: str,
        metadata: Dict[str, Any] | None = None,
    ) -> stripe.Transfer:
        """Create a Transfer from the platform balance to a trainer's connected account."""

        return stripe.Transfer.create(
            amount=amount,
            currency=self._currency,
            destination=destination_account_id,
            metadata=metadata or {},
            idempotency_key=idempotency_key,
        )


__all__ = ["StripeClient"]
