"""Services handling processor and transfer webhook callbacks."""
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Mapping

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.actor import SYSTEM_ACTOR
from app.models import PAID_STATUSES, Payment, PaymentStatus, PSPWebhookEvent
from app.services import settlement
from app.utils.audit import log_audit
from app.utils.errors import InconsistentRecord, NotFound, SettlementError, ValidationFailed, error_response
from app.utils.money import processor_fee
from app.utils.time import ensure_utc, parse_iso_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "default"
PAYOUT_RESULT_STATUSES = frozenset({"paid", "failed"})


@dataclass(frozen=True)
class WebhookResult:
    event: PSPWebhookEvent
    duplicate: bool


def _current_settings():
    return get_settings()


def _current_secrets() -> tuple[str | None, str | None]:
    settings = _current_settings()
    return settings.psp_webhook_secret, settings.psp_webhook_secret_next


def _masked_secret_status(secrets_info: Mapping[str, str | None]) -> dict[str, str | None]:
    """Return deterministic markers instead of raw secrets for logging."""

    masked: dict[str, str | None] = {}
    for name, secret in secrets_info.items():
        if not secret:
            masked[name] = None
            continue

        digest = hashlib.sha256(secret.encode()).hexdigest()[:8]
        masked[name] = f"sha256:{digest}"
    return masked


def _get_header(headers: Mapping[str, str], key: str) -> str | None:
    for h_key, value in headers.items():
        if h_key.lower() == key.lower():
            return value
    return None


def _compute_webhook_signature(secret: str, body: bytes, timestamp: str) -> str:
    """Compute HMAC-SHA256 signature for the webhook payload."""

    msg = f"{timestamp}.{body.decode('utf-8')}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def _validate_psp_timestamp(ts_seconds: int, secrets_info: Mapping[str, str | None]) -> None:
    settings = _current_settings()
    max_drift = getattr(settings, "psp_webhook_max_drift_seconds", 180)
    age = abs(int(time.time()) - ts_seconds)

    if age > max_drift:
        logger.warning(
            "PSP webhook timestamp outside allowed window",
            extra={"psp_secret_status": _masked_secret_status(secrets_info), "age": age},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response(
                "WEBHOOK_TIMESTAMP_DRIFT",
                "Webhook timestamp is outside allowed window.",
                {"age_seconds": age, "max_drift_seconds": max_drift},
            ),
        )


def verify_psp_webhook_signature(raw_body: bytes, headers: Mapping[str, str]) -> int:
    """Validate PSP webhook signature and timestamp and raise on failure."""

    provided_sig = _get_header(headers, "X-PSP-Signature")
    ts = _get_header(headers, "X-PSP-Timestamp")

    primary_secret, secondary_secret = _current_secrets()
    secrets = [s for s in (primary_secret, secondary_secret) if s]
    secrets_info = {"primary": primary_secret, "secondary": secondary_secret}
    if not secrets:
        logger.error(
            "PSP webhook secrets are not configured",
            extra={"psp_secret_status": _masked_secret_status(secrets_info)},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response("WEBHOOK_SECRET_NOT_CONFIGURED", "PSP webhook secrets are not configured."),
        )

    if not provided_sig or not ts:
        logger.warning(
            "Missing PSP signature or timestamp",
            extra={"psp_secret_status": _masked_secret_status(secrets_info)},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("WEBHOOK_SIGNATURE_MISSING", "Signature or timestamp header missing."),
        )

    try:
        ts_seconds = int(float(ts))
    except (TypeError, ValueError):
        try:
            ts_seconds = int(parse_iso_utc(ts).timestamp())
        except ValueError:
            logger.warning(
                "Invalid PSP webhook timestamp format",
                extra={"psp_secret_status": _masked_secret_status(secrets_info)},
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=error_response("WEBHOOK_TIMESTAMP_INVALID", "Invalid timestamp format."),
            )

    _validate_psp_timestamp(ts_seconds, secrets_info)

    for secret in secrets:
        expected = _compute_webhook_signature(secret, raw_body, ts)
        if hmac.compare_digest(expected, provided_sig):
            return ts_seconds

    logger.warning(
        "PSP webhook signature mismatch",
        extra={"psp_secret_status": _masked_secret_status(secrets_info)},
    )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=error_response("WEBHOOK_SIGNATURE_INVALID", "Invalid PSP webhook signature."),
    )


def dedup_key(payload: Mapping[str, Any]) -> tuple[str, str, int, str]:
    """Return ``(event_id, kind, entity_id, status)`` for a notification body.

    Deliveries are de-duplicated on the entity and the reported status, so a
    redelivery of the same transition is recognised whatever its envelope id.
    A failed payout also carries its ``transfer_ref`` so each retried transfer
    reports its own failure.
    """

    kind = str(payload.get("type") or "payment")
    reported = payload.get("status")
    if not reported:
        raise ValidationFailed("Webhook status is required", code="WEBHOOK_STATUS_MISSING")
    if kind == "payment":
        raw_id = payload.get("payment_id")
    elif kind == "payout":
        raw_id = payload.get("payout_request_id")
        if reported not in PAYOUT_RESULT_STATUSES:
            raise ValidationFailed(f"Unsupported payout status {reported!r}", code="WEBHOOK_STATUS_INVALID")
    else:
        raise ValidationFailed(f"Unsupported webhook type {kind!r}", code="WEBHOOK_TYPE_UNSUPPORTED")
    try:
        entity_id = int(raw_id)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed("Webhook entity id is missing", code="WEBHOOK_ENTITY_MISSING") from exc
    event_id = f"{kind}:{entity_id}:{reported}"
    transfer_ref = payload.get("transfer_ref")
    if kind == "payout" and reported == "failed" and transfer_ref:
        event_id = f"{event_id}:{str(transfer_ref)[:64]}"
    return event_id, kind, entity_id, str(reported)


def _existing_event(db: Session, provider: str, event_id: str) -> PSPWebhookEvent | None:
    return db.scalars(
        select(PSPWebhookEvent)
        .where(PSPWebhookEvent.provider == provider, PSPWebhookEvent.event_id == event_id)
        .execution_options(populate_existing=True)
    ).one_or_none()


def handle_event(db: Session, payload: dict[str, Any], *, provider: str = DEFAULT_PROVIDER) -> WebhookResult:
    """Persist and apply one notification; a redelivery is acknowledged without side effects."""

    event_id, kind, entity_id, reported = dedup_key(payload)
    existing = _existing_event(db, provider, event_id)
    if existing is not None:
        logger.info("Duplicate PSP webhook ignored", extra={"event_id": event_id, "provider": provider})
        return WebhookResult(event=existing, duplicate=True)

    event = PSPWebhookEvent(
        provider=provider,
        event_id=event_id,
        psp_ref=payload.get("psp_ref"),
        kind=kind,
        raw_json=payload,
        received_at=utcnow(),
    )
    try:
        db.add(event)
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("Concurrent PSP webhook delivery ignored", extra={"event_id": event_id, "provider": provider})
        return WebhookResult(event=_existing_event(db, provider, event_id), duplicate=True)

    if kind == "payment":
        try:
            apply_payment_notification(
                db,
                payment_id=entity_id,
                reported_status=reported,
                amount=payload.get("amount"),
                net_amount=payload.get("net_amount"),
                timestamp=payload.get("timestamp"),
            )
        except SettlementError:
            # Unrecorded so a corrected redelivery is still applied.
            db.rollback()
            raise
        event.processed_at = utcnow()
        db.commit()
    else:
        event.processed_at = utcnow()
        settlement.confirm_payout_transfer(
            db,
            entity_id,
            succeeded=reported == "paid",
            actor=SYSTEM_ACTOR,
            reference=payload.get("transfer_ref"),
        )
    db.refresh(event)
    logger.info(
        "PSP webhook processed",
        extra={"provider": provider, "event_id": event_id, "kind": kind, "status": reported},
    )
    return WebhookResult(event=event, duplicate=False)


def _event_time(value: Any) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return parse_iso_utc(str(value))
    except ValueError as exc:
        raise ValidationFailed("Webhook timestamp is invalid", code="WEBHOOK_TIMESTAMP_INVALID") from exc


def apply_payment_notification(
    db: Session,
    *,
    payment_id: int,
    reported_status: str,
    amount: Any,
    net_amount: Any,
    timestamp: Any = None,
) -> Payment:
    """Move a payment along the processor's lifecycle; the caller commits.

    Captured payments are immutable: a later notification for one is logged
    and ignored. Amount mismatches are integrity faults and abort the update.
    """

    try:
        new_status = PaymentStatus(reported_status)
    except ValueError as exc:
        raise ValidationFailed(f"Unknown payment status {reported_status!r}", code="PAYMENT_STATUS_INVALID") from exc

    payment = db.get(Payment, payment_id, populate_existing=True)
    if payment is None:
        raise NotFound(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")

    if payment.status in PAID_STATUSES:
        if new_status != payment.status:
            logger.warning(
                "Ignoring status change for captured payment",
                extra={"payment_id": payment.id, "status": payment.status.value, "reported": new_status.value},
            )
        return payment

    if new_status in PAID_STATUSES:
        if amount is not None and amount != payment.amount:
            logger.error(
                "Processor amount does not match payment",
                extra={"payment_id": payment.id, "expected": payment.amount, "reported": amount},
            )
            raise InconsistentRecord(
                "Reported amount does not match the payment",
                code="AMOUNT_MISMATCH",
                details={"payment_id": payment.id},
            )
        try:
            processor_fee(payment.amount, net_amount)
        except InconsistentRecord:
            logger.error(
                "Processor reported an inconsistent net amount",
                extra={"payment_id": payment.id, "amount": payment.amount, "net_amount": net_amount},
            )
            raise
        payment.net_amount = net_amount
        payment.paid_at = _event_time(timestamp)
    elif new_status == payment.status:
        return payment

    previous = payment.status
    payment.status = new_status
    log_audit(
        db,
        actor=SYSTEM_ACTOR.audit_name,
        action=f"PAYMENT_{new_status.value.upper()}",
        entity="Payment",
        entity_id=payment.id,
        data={"from": previous.value, "to": new_status.value, "net_amount": payment.net_amount},
    )
    logger.info(
        "Payment status updated",
        extra={"payment_id": payment.id, "from": previous.value, "to": new_status.value},
    )
    return payment


__all__ = [
    "WebhookResult",
    "apply_payment_notification",
    "dedup_key",
    "handle_event",
    "verify_psp_webhook_signature",
]
