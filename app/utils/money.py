"""Integer money arithmetic for lesson settlement.

Amounts are whole currency units. Every split truncates toward zero so the
platform never credits itself a fractional unit. The platform fee is taken
from the gross ``amount`` while the trainer share is taken from ``net_amount``;
the two bases are intentionally different and do not sum to one total.
"""
from __future__ import annotations

from typing import Final

from app.utils.errors import InconsistentRecord

PLATFORM_FEE_PERCENT: Final[int] = 20
TRAINER_SHARE_PERCENT: Final[int] = 80
TRANSFER_FEE: Final[int] = 250


def _require_amount(name: str, value: int | None) -> int:
    if value is None:
        raise InconsistentRecord(f"{name} is missing", code="AMOUNT_MISSING", details={"field": name})
    if isinstance(value, bool) or not isinstance(value, int):
        raise InconsistentRecord(
            f"{name} must be an integer amount", code="AMOUNT_NOT_INTEGER", details={"field": name}
        )
    if value < 0:
        raise InconsistentRecord(
            f"{name} must not be negative", code="AMOUNT_NEGATIVE", details={"field": name, "value": value}
        )
    return value


def processor_fee(amount: int | None, net_amount: int | None) -> int:
    """Return ``amount - net_amount``; rejects ``net_amount > amount``."""

    gross = _require_amount("amount", amount)
    net = _require_amount("net_amount", net_amount)
    if net > gross:
        raise InconsistentRecord(
            "net_amount exceeds amount",
            code="NET_EXCEEDS_AMOUNT",
            details={"amount": gross, "net_amount": net},
        )
    return gross - net


def nominal_platform_cut(amount: int | None) -> int:
    """floor(amount * 0.20)."""

    return _require_amount("amount", amount) * PLATFORM_FEE_PERCENT // 100


def platform_fee(amount: int | None, net_amount: int | None) -> int:
    """Platform revenue for one payment: nominal 20% cut minus the processor fee.

    Negative when the processor fee exceeds the nominal cut; callers report it.
    """

    return nominal_platform_cut(amount) - processor_fee(amount, net_amount)


def trainer_share(net_amount: int | None) -> int:
    """floor(net_amount * 0.80)."""

    return _require_amount("net_amount", net_amount) * TRAINER_SHARE_PERCENT // 100


def refundable_amount(amount: int | None, net_amount: int | None) -> int:
    """Full refund minus the non-recoverable processor fee."""

    return _require_amount("amount", amount) - processor_fee(amount, net_amount)


def net_payout(gross_eligible_amount: int, transfer_fee: int = TRANSFER_FEE) -> int:
    return _require_amount("gross_eligible_amount", gross_eligible_amount) - transfer_fee


__all__ = [
    "PLATFORM_FEE_PERCENT",
    "TRAINER_SHARE_PERCENT",
    "TRANSFER_FEE",
    "net_payout",
    "nominal_platform_cut",
    "platform_fee",
    "processor_fee",
    "refundable_amount",
    "trainer_share",
]
