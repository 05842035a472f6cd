"""Processor-facing collaborators: checkout, refunds and trainer transfers.

When Stripe is disabled the manual gateways return synthetic references and
leave the money movement to an operator; confirmations still arrive through
the PSP webhook.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

import stripe

from app.config import get_settings
from app.models import Lesson, Payment
from app.services.psp_stripe import StripeClient
from app.utils.errors import UpstreamUnavailable, ValidationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayResult:
    reference: str
    client_secret: str | None = None


class CheckoutGateway(Protocol):
    def start_checkout(self, lesson: Lesson, payment: Payment) -> GatewayResult: ...


class RefundGateway(Protocol):
    def refund(self, payment: Payment, amount: int, idempotency_key: str) -> GatewayResult: ...


class TransferService(Protocol):
    def transfer(
        self,
        *,
        trainer_id: int,
        net_payout: int,
        idempotency_key: str,
        destination: str | None = None,
    ) -> GatewayResult: ...


class ManualGateway:
    """Stub used when no processor is configured."""

    def start_checkout(self, lesson: Lesson, payment: Payment) -> GatewayResult:
        return GatewayResult(reference=f"manual-pi-{uuid4().hex}")

    def refund(self, payment: Payment, amount: int, idempotency_key: str) -> GatewayResult:
        logger.info(
            "Manual refund recorded",
            extra={"payment_id": payment.id, "amount": amount, "idempotency_key": idempotency_key},
        )
        return GatewayResult(reference=f"manual-re-{uuid4().hex}")

    def transfer(
        self,
        *,
        trainer_id: int,
        net_payout: int,
        idempotency_key: str,
        destination: str | None = None,
    ) -> GatewayResult:
        logger.info(
            "Manual transfer requested",
            extra={"trainer_id": trainer_id, "net_payout": net_payout, "idempotency_key": idempotency_key},
        )
        return GatewayResult(reference=f"manual-tr-{uuid4().hex}")


class StripeGateway:
    """Stripe-backed checkout, refund and transfer calls."""

    def __init__(self, client: StripeClient) -> None:
        self.client = client

    def start_checkout(self, lesson: Lesson, payment: Payment) -> GatewayResult:
        try:
            intent = self.client.create_lesson_payment_intent(lesson, payment)
        except stripe.StripeError as exc:
            logger.error("Stripe checkout failed", extra={"payment_id": payment.id}, exc_info=True)
            raise UpstreamUnavailable("Payment processor unavailable", code="PSP_UNAVAILABLE") from exc
        return GatewayResult(reference=intent.id, client_secret=intent.client_secret)

    def refund(self, payment: Payment, amount: int, idempotency_key: str) -> GatewayResult:
        if not payment.psp_ref:
            raise ValidationFailed("Payment has no processor reference", code="PSP_REF_MISSING")
        try:
            refund = self.client.create_refund(
                payment_intent_id=payment.psp_ref, amount=amount, idempotency_key=idempotency_key
            )
        except stripe.StripeError as exc:
            logger.error("Stripe refund failed", extra={"payment_id": payment.id}, exc_info=True)
            raise UpstreamUnavailable("Payment processor unavailable", code="PSP_UNAVAILABLE") from exc
        return GatewayResult(reference=refund.id)

    def transfer(
        self,
        *,
        trainer_id: int,
        net_payout: int,
        idempotency_key: str,
        destination: str | None = None,
    ) -> GatewayResult:
        if not destination:
            raise ValidationFailed("Trainer has no payout account", code="PAYOUT_ACCOUNT_MISSING")
        try:
            transfer = self.client.create_transfer(
                destination_account_id=destination,
                amount=net_payout,
                idempotency_key=idempotency_key,
                metadata={"trainer_id": str(trainer_id), "idempotency_key": idempotency_key},
            )
        except stripe.StripeError as exc:
            logger.error("Stripe transfer failed", extra={"trainer_id": trainer_id}, exc_info=True)
            raise UpstreamUnavailable("Transfer service unavailable", code="TRANSFER_UNAVAILABLE") from exc
        return GatewayResult(reference=transfer.id)


_gateway_override: object | None = None


def get_gateway():
    """Return the active gateway (Stripe when enabled, otherwise manual)."""

    if _gateway_override is not None:
        return _gateway_override
    settings = get_settings()
    if settings.STRIPE_ENABLED:
        try:
            return StripeGateway(StripeClient(settings))
        except RuntimeError as exc:
            logger.error("Stripe gateway misconfigured", exc_info=True)
            raise UpstreamUnavailable(str(exc), code="STRIPE_NOT_CONFIGURED") from exc
    return ManualGateway()


def set_gateway(gateway: object | None) -> None:
    """Install a gateway for every call (``None`` restores the configured one)."""

    global _gateway_override
    _gateway_override = gateway


__all__ = [
    "CheckoutGateway",
    "GatewayResult",
    "ManualGateway",
    "RefundGateway",
    "StripeGateway",
    "TransferService",
    "get_gateway",
    "set_gateway",
]
