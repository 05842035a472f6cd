from datetime import UTC, date, datetime

import pytest

from app.models import LessonStatus, Payment, PaymentStatus, PayoutExclusionReason, PayoutStatus, UserRole
from app.services import settlement
from app.services.payouts import create_payout_request, payout_eligible_date, quote_payout
from app.utils.errors import DuplicateActiveRequest, Forbidden, ValidationFailed
from app.utils.time import utcnow


@pytest.fixture
def completed_lesson(trainer_user, make_lesson):
    return make_lesson(trainer_user, status=LessonStatus.COMPLETED)


@pytest.fixture
def eligible_sales(completed_lesson, client_user, make_user, make_payment):
    second_client = make_user(UserRole.CLIENT)
    return [
        make_payment(completed_lesson, client_user, amount=10000, net_amount=9640),
        make_payment(completed_lesson, second_client, amount=10000, net_amount=9640),
    ]


def test_payout_eligible_date_is_tenth_business_day():
    assert payout_eligible_date(datetime(2025, 6, 20, tzinfo=UTC)) == date(2025, 6, 13)


def test_quote_sums_trainer_share_of_eligible_sales(db_session, trainer_user, eligible_sales):
    quote = quote_payout(db_session, trainer_user.id, utcnow())
    assert quote.payment_ids == tuple(p.id for p in eligible_sales)
    assert quote.total_sales == 20000
    assert quote.gross_eligible_amount == 7712 * 2
    assert quote.transfer_fee == 250
    assert quote.net_payout == 7712 * 2 - 250


def test_quote_skips_ineligible_payments(
    db_session, trainer_user, client_user, completed_lesson, make_lesson, make_payment
):
    scheduled = make_lesson(trainer_user)
    make_payment(scheduled, client_user)
    make_payment(completed_lesson, client_user, paid_at=utcnow())
    make_payment(completed_lesson, client_user, status=PaymentStatus.PENDING)
    excluded = make_payment(completed_lesson, client_user)
    excluded.payout_excluded = True
    excluded.payout_excluded_reason = PayoutExclusionReason.REFUND
    db_session.commit()

    quote = quote_payout(db_session, trainer_user.id, utcnow())
    assert quote.payment_ids == ()
    assert quote.gross_eligible_amount == 0


def test_create_claims_payments(db_session, trainer_user, eligible_sales, as_actor):
    request = create_payout_request(db_session, trainer_user.id, as_actor(trainer_user), utcnow())
    db_session.commit()

    assert request.status == PayoutStatus.PENDING
    assert request.net_payout == request.gross_eligible_amount - request.transfer_fee
    for payment in eligible_sales:
        db_session.refresh(payment)
        assert payment.payout_request_id == request.id


def test_second_request_while_active_is_rejected(db_session, trainer_user, eligible_sales, as_actor):
    settlement.submit_payout_request(db_session, trainer_user.id, as_actor(trainer_user))
    with pytest.raises(DuplicateActiveRequest):
        settlement.submit_payout_request(db_session, trainer_user.id, as_actor(trainer_user))


def test_nothing_to_pay_out(db_session, trainer_user, as_actor):
    with pytest.raises(ValidationFailed) as excinfo:
        create_payout_request(db_session, trainer_user.id, as_actor(trainer_user), utcnow())
    assert excinfo.value.code == "NOTHING_TO_PAY_OUT"


def test_amount_must_exceed_transfer_fee(db_session, trainer_user, client_user, completed_lesson, make_payment, as_actor):
    make_payment(completed_lesson, client_user, amount=300, net_amount=290)
    with pytest.raises(ValidationFailed) as excinfo:
        create_payout_request(db_session, trainer_user.id, as_actor(trainer_user), utcnow())
    assert excinfo.value.code == "PAYOUT_BELOW_TRANSFER_FEE"


def test_only_the_trainer_may_request(db_session, trainer_user, admin_user, eligible_sales, as_actor):
    with pytest.raises(Forbidden) as excinfo:
        create_payout_request(db_session, trainer_user.id, as_actor(admin_user), utcnow())
    assert excinfo.value.code == "PAYOUT_OWNER_REQUIRED"


def test_rejection_releases_claimed_payments(
    db_session, trainer_user, admin_user, eligible_sales, as_actor, dispatcher
):
    request = settlement.submit_payout_request(db_session, trainer_user.id, as_actor(trainer_user))
    decided = settlement.decide(db_session, "payout", request.id, "rejected", as_actor(admin_user))

    assert decided.status == PayoutStatus.REJECTED
    for payment in eligible_sales:
        db_session.refresh(payment)
        assert payment.payout_request_id is None
    assert dispatcher.events() == ["payout.rejected"]

    again = settlement.submit_payout_request(db_session, trainer_user.id, as_actor(trainer_user))
    assert again.id != request.id


def test_transfer_and_webhook_style_confirmation(
    db_session, trainer_user, admin_user, eligible_sales, as_actor, gateway, dispatcher
):
    request = settlement.submit_payout_request(db_session, trainer_user.id, as_actor(trainer_user))
    settlement.decide(db_session, "payout", request.id, "approved", as_actor(admin_user))

    started = settlement.initiate_payout_transfer(db_session, request.id, as_actor(admin_user))
    assert started.status == PayoutStatus.APPROVED
    assert gateway.transfers == [
        {
            "trainer_id": trainer_user.id,
            "net_payout": request.net_payout,
            "idempotency_key": f"payout:{request.id}",
            "destination": "acct_test_trainer",
        }
    ]

    paid = settlement.confirm_payout_transfer(db_session, request.id, succeeded=True, reference=started.transfer_ref)
    assert paid.status == PayoutStatus.PAID
    assert paid.paid_at is not None
    assert dispatcher.events() == ["payout.approved", "payout.paid"]

    still_linked = db_session.get(Payment, eligible_sales[0].id, populate_existing=True)
    assert still_linked.payout_request_id == request.id
