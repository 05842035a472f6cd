"""Ledger aggregation: revenue, fee, refund and payout totals over a time window.

Functions here are pure and operate on explicit record sets (ORM rows or any
object exposing the same attributes). A malformed record never aborts a
computation: it is excluded, logged and tallied in ``anomalies``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Iterable

from app.models.payment import PAID_STATUSES
from app.models.payout_request import PayoutStatus
from app.models.refund import RefundStatus
from app.utils.errors import InconsistentRecord
from app.utils.money import platform_fee
from app.utils.time import ensure_utc, local_zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerTotals:
    lesson_count: int = 0
    gross_revenue: int = 0
    fee_revenue: int = 0
    refund_total: int = 0
    payout_total: int = 0
    negative_fee_count: int = 0
    anomalies: int = 0


@dataclass(frozen=True)
class DashboardStats:
    window_start: datetime
    window_end: datetime
    window: LedgerTotals
    all_time: LedgerTotals
    pending_refunds: int
    pending_payouts: int
    pending_identity_verifications: int
    active_trainers: int = 0
    active_clients: int = 0


def month_window(now: datetime, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """Return ``[month_start, next_month_start)`` of ``now``'s local calendar month, in UTC."""

    zone = tz or local_zone()
    local_now = ensure_utc(now).astimezone(zone)
    start = local_now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        nxt = start.replace(year=start.year + 1, month=1)
    else:
        nxt = start.replace(month=start.month + 1)
    return ensure_utc(start), ensure_utc(nxt)


def _record_id(record: Any) -> Any:
    return getattr(record, "id", None)


def _in_window(record: Any, start: datetime | None, end: datetime | None) -> bool:
    created_at = getattr(record, "created_at", None)
    if not isinstance(created_at, datetime):
        raise InconsistentRecord("created_at is missing", code="TIMESTAMP_MISSING")
    created = ensure_utc(created_at)
    if start is not None and created < ensure_utc(start):
        return False
    if end is not None and created >= ensure_utc(end):
        return False
    return True


def _status_value(value: Any) -> str | None:
    if value is None:
        return None
    return getattr(value, "value", value)


def _count_anomaly(kind: str, record: Any, exc: InconsistentRecord) -> None:
    logger.warning(
        "Ledger record excluded",
        extra={"record_kind": kind, "record_id": _record_id(record), "code": exc.code},
    )


def _require_int(name: str, value: Any) -> int:
    if value is None or isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InconsistentRecord(f"{name} is not a valid amount", code="AMOUNT_INVALID")
    return value


def aggregate_window(
    payments: Iterable[Any],
    refunds: Iterable[Any],
    payouts: Iterable[Any],
    start: datetime | None,
    end: datetime | None,
) -> LedgerTotals:
    """Aggregate the records whose ``created_at`` falls in ``[start, end)``.

    ``start=None`` means no lower bound; ``end=None`` means no upper bound.
    """

    paid_values = {status.value for status in PAID_STATUSES}
    lesson_count = gross = fees = negative_fees = 0
    refund_total = payout_total = 0
    anomalies = 0

    for payment in payments:
        try:
            if not _in_window(payment, start, end):
                continue
            if _status_value(getattr(payment, "status", None)) not in paid_values:
                continue
            amount = getattr(payment, "amount", None)
            fee = platform_fee(amount, getattr(payment, "net_amount", None))
        except InconsistentRecord as exc:
            anomalies += 1
            _count_anomaly("payment", payment, exc)
            continue
        lesson_count += 1
        gross += amount
        fees += fee
        if fee < 0:
            negative_fees += 1
            logger.warning(
                "Processor fee exceeds nominal platform cut",
                extra={"payment_id": _record_id(payment), "platform_fee": fee},
            )

    for refund in refunds:
        try:
            if not _in_window(refund, start, end):
                continue
            if _status_value(getattr(refund, "refund_status", None)) != RefundStatus.REFUNDED.value:
                continue
            refund_total += _require_int("refund_amount", getattr(refund, "refund_amount", None))
        except InconsistentRecord as exc:
            anomalies += 1
            _count_anomaly("refund", refund, exc)

    for payout in payouts:
        try:
            if not _in_window(payout, start, end):
                continue
            if _status_value(getattr(payout, "status", None)) != PayoutStatus.PAID.value:
                continue
            payout_total += _require_int("net_payout", getattr(payout, "net_payout", None))
        except InconsistentRecord as exc:
            anomalies += 1
            _count_anomaly("payout_request", payout, exc)

    return LedgerTotals(
        lesson_count=lesson_count,
        gross_revenue=gross,
        fee_revenue=fees,
        refund_total=refund_total,
        payout_total=payout_total,
        negative_fee_count=negative_fees,
        anomalies=anomalies,
    )


def build_dashboard(
    *,
    window_start: datetime,
    window_end: datetime,
    payments: Iterable[Any],
    refunds: Iterable[Any],
    payouts: Iterable[Any],
    pending_refunds: int,
    pending_payouts: int,
    pending_identity_verifications: int,
    active_trainers: int = 0,
    active_clients: int = 0,
) -> DashboardStats:
    """Combine the windowed totals, the all-time totals and the all-time pending counts."""

    payments = list(payments)
    refunds = list(refunds)
    payouts = list(payouts)
    return DashboardStats(
        window_start=window_start,
        window_end=window_end,
        window=aggregate_window(payments, refunds, payouts, window_start, window_end),
        all_time=aggregate_window(payments, refunds, payouts, None, None),
        pending_refunds=pending_refunds,
        pending_payouts=pending_payouts,
        pending_identity_verifications=pending_identity_verifications,
        active_trainers=active_trainers,
        active_clients=active_clients,
    )


__all__ = ["DashboardStats", "LedgerTotals", "aggregate_window", "build_dashboard", "month_window"]
