from datetime import UTC, datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from app.services.ledger import aggregate_window, build_dashboard, month_window

START = datetime(2025, 6, 1, tzinfo=UTC)
END = datetime(2025, 7, 1, tzinfo=UTC)
IN_WINDOW = datetime(2025, 6, 15, tzinfo=UTC)
BEFORE_WINDOW = datetime(2025, 5, 15, tzinfo=UTC)


def _payment(id, amount, net_amount, status="paid", created_at=IN_WINDOW):
    return SimpleNamespace(id=id, amount=amount, net_amount=net_amount, status=status, created_at=created_at)


def _refund(id, amount, status="refunded", created_at=IN_WINDOW):
    return SimpleNamespace(id=id, refund_amount=amount, refund_status=status, created_at=created_at)


def _payout(id, net_payout, status="paid", created_at=IN_WINDOW):
    return SimpleNamespace(id=id, net_payout=net_payout, status=status, created_at=created_at)


def test_month_revenue_and_fees():
    totals = aggregate_window(
        [_payment(1, 10000, 9500), _payment(2, 5000, 4800)],
        [],
        [],
        START,
        END,
    )
    assert totals.lesson_count == 2
    assert totals.gross_revenue == 15000
    assert totals.fee_revenue == 2300
    assert totals.anomalies == 0


def test_only_paid_statuses_count_toward_revenue():
    totals = aggregate_window(
        [
            _payment(1, 10000, 9500, status="succeeded"),
            _payment(2, 4000, None, status="pending"),
            _payment(3, 4000, 3800, status="failed"),
        ],
        [],
        [],
        START,
        END,
    )
    assert totals.lesson_count == 1
    assert totals.gross_revenue == 10000


def test_window_bounds_are_half_open():
    totals = aggregate_window(
        [_payment(1, 1000, 900, created_at=START), _payment(2, 1000, 900, created_at=END)],
        [],
        [],
        START,
        END,
    )
    assert totals.lesson_count == 1


def test_malformed_payment_is_counted_not_fatal():
    totals = aggregate_window(
        [_payment(1, 10000, 9500), _payment(2, 1000, 1500), _payment(3, 1000, None)],
        [],
        [],
        START,
        END,
    )
    assert totals.lesson_count == 1
    assert totals.gross_revenue == 10000
    assert totals.anomalies == 2


def test_negative_fee_is_reported():
    totals = aggregate_window([_payment(1, 100, 70)], [], [], START, END)
    assert totals.fee_revenue == -10
    assert totals.negative_fee_count == 1


def test_refund_and_payout_totals_use_settled_rows_only():
    totals = aggregate_window(
        [],
        [_refund(1, 9640), _refund(2, 500, status="pending"), _refund(3, 700, status="rejected")],
        [_payout(1, 7350), _payout(2, 1000, status="approved"), _payout(3, None)],
        START,
        END,
    )
    assert totals.refund_total == 9640
    assert totals.payout_total == 7350
    assert totals.anomalies == 1


def test_dashboard_pending_counts_are_all_time():
    stats = build_dashboard(
        window_start=START,
        window_end=END,
        payments=[_payment(1, 10000, 9500, created_at=BEFORE_WINDOW)],
        refunds=[],
        payouts=[],
        pending_refunds=2,
        pending_payouts=1,
        pending_identity_verifications=3,
    )
    assert stats.window.lesson_count == 0
    assert stats.all_time.lesson_count == 1
    assert stats.all_time.fee_revenue == 1500
    assert stats.pending_refunds == 2
    assert stats.pending_payouts == 1
    assert stats.pending_identity_verifications == 3


def test_month_window_follows_local_calendar():
    tokyo = ZoneInfo("Asia/Tokyo")
    # 2025-06-30T16:00Z is already July 1st in Tokyo.
    start, end = month_window(datetime(2025, 6, 30, 16, 0, tzinfo=UTC), tokyo)
    assert start == datetime(2025, 7, 1, tzinfo=tokyo)
    assert end == datetime(2025, 8, 1, tzinfo=tokyo)
    assert start.tzinfo == UTC


def test_month_window_rolls_over_year():
    start, end = month_window(datetime(2025, 12, 20, tzinfo=UTC), UTC)
    assert start == datetime(2025, 12, 1, tzinfo=UTC)
    assert end == datetime(2026, 1, 1, tzinfo=UTC)
