"""End-to-end booking, cancellation, refund and dashboard flows over the API."""
from datetime import UTC, datetime

import pytest

from app.models import (
    Lesson,
    LessonStatus,
    Payment,
    PaymentStatus,
    PayoutExclusionReason,
    Refund,
    RefundStatus,
    UserRole,
    VerificationStatus,
)

BEFORE_DEADLINE = datetime(2025, 6, 1, 3, 0, tzinfo=UTC)
AFTER_DEADLINE = datetime(2025, 6, 10, 0, 30, tzinfo=UTC)
LESSON = {"title": "Evening mobility", "price": 10000, "date": "2025-06-10", "time": "19:00:00"}


@pytest.fixture
def frozen_now(monkeypatch):
    def _freeze(moment: datetime) -> None:
        monkeypatch.setattr("app.routers.lessons.utcnow", lambda: moment)

    _freeze(BEFORE_DEADLINE)
    return _freeze


@pytest.fixture
def booked(trainer_user, client_user, make_lesson, make_payment):
    lesson = make_lesson(trainer_user, price=10000)
    payment = make_payment(lesson, client_user, amount=10000, net_amount=9640)
    return lesson, payment


@pytest.mark.anyio
async def test_unverified_trainer_cannot_publish(client, trainer_headers):
    response = await client.post("/lessons", json=LESSON, headers=trainer_headers)
    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "IDENTITY_NOT_SUBMITTED"
    assert error["details"] == {"verification_status": "not_submitted"}


@pytest.mark.anyio
async def test_pending_verification_blocks_publish(client, trainer_user, trainer_headers, verify_trainer):
    verify_trainer(trainer_user, VerificationStatus.PENDING)
    response = await client.post("/lessons", json=LESSON, headers=trainer_headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "IDENTITY_PENDING"


@pytest.mark.anyio
async def test_verification_submission_then_approval_unlocks_publish(
    client, trainer_headers, admin_headers, dispatcher
):
    submitted = await client.post(
        "/verifications",
        json={"document_type": "passport", "document_url": "https://files.example.com/id/scan.png"},
        headers=trainer_headers,
    )
    assert submitted.status_code == 201
    verification_id = submitted.json()["id"]

    status_response = await client.get("/verifications/status", headers=trainer_headers)
    assert status_response.json()["reason_code"] == "IDENTITY_PENDING"

    decided = await client.post(
        f"/admin/decisions/identity_verification/{verification_id}",
        json={"outcome": "approved"},
        headers=admin_headers,
    )
    assert decided.status_code == 200
    assert decided.json()["status"] == "approved"
    assert dispatcher.events() == ["identity_verification.approved"]

    published = await client.post("/lessons", json=LESSON, headers=trainer_headers)
    assert published.status_code == 201
    assert published.json()["status"] == "scheduled"


@pytest.mark.anyio
async def test_checkout_then_paid_webhook(
    client, db_session, trainer_user, client_headers, make_lesson, signed_webhook, gateway
):
    lesson = make_lesson(trainer_user, price=8000)

    response = await client.post(f"/lessons/{lesson.id}/checkout", headers=client_headers)
    assert response.status_code == 201
    checkout = response.json()
    assert checkout["amount"] == 8000
    assert checkout["status"] == "pending"
    assert checkout["client_secret"] == f"secret_{checkout['payment_id']}"

    again = await client.post(f"/lessons/{lesson.id}/checkout", headers=client_headers)
    assert again.json()["payment_id"] == checkout["payment_id"]
    assert gateway.checkouts == [checkout["payment_id"]]

    body, headers = signed_webhook(
        {"type": "payment", "payment_id": checkout["payment_id"], "status": "succeeded", "amount": 8000, "net_amount": 7712}
    )
    assert (await client.post("/psp/webhook", content=body, headers=headers)).status_code == 200

    paid_again = await client.post(f"/lessons/{lesson.id}/checkout", headers=client_headers)
    assert paid_again.status_code == 409
    assert paid_again.json()["error"]["code"] == "LESSON_ALREADY_PAID"

    payment = db_session.get(Payment, checkout["payment_id"], populate_existing=True)
    assert payment.status == PaymentStatus.SUCCEEDED


@pytest.mark.anyio
async def test_trainers_cannot_book(client, trainer_user, trainer_headers, make_lesson):
    lesson = make_lesson(trainer_user)
    response = await client.post(f"/lessons/{lesson.id}/checkout", headers=trainer_headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "CLIENT_REQUIRED"


@pytest.mark.anyio
async def test_client_cancel_before_deadline_then_refund_approved(
    client, db_session, booked, client_headers, admin_headers, frozen_now, gateway, dispatcher
):
    lesson, payment = booked

    preview = await client.post(f"/lessons/{lesson.id}/cancellation-preview", json={}, headers=client_headers)
    assert preview.status_code == 200
    assert preview.json()["eligible"] is True
    assert preview.json()["amount"] == 9640

    response = await client.post(
        f"/lessons/{lesson.id}/cancel", json={"reason": "schedule conflict"}, headers=client_headers
    )
    assert response.status_code == 200
    body = response.json()
    assert body["cancelled_by"] == "client"
    assert body["decisions"][0]["reason_code"] == "CLIENT_BEFORE_DEADLINE"
    (refund_id,) = body["refund_ids"]

    db_session.refresh(payment)
    assert payment.payout_excluded is True
    assert payment.payout_excluded_reason == PayoutExclusionReason.REFUND

    decided = await client.post(
        f"/admin/decisions/refund/{refund_id}", json={"outcome": "approved"}, headers=admin_headers
    )
    assert decided.status_code == 200
    assert decided.json()["status"] == "refunded"
    assert gateway.refunds == [{"payment_id": payment.id, "amount": 9640, "idempotency_key": f"refund:{refund_id}"}]
    assert dispatcher.events() == ["refund.approved"]

    refund = db_session.get(Refund, refund_id, populate_existing=True)
    assert refund.processor_ref == "re_test_1"

    repeat = await client.post(
        f"/admin/decisions/refund/{refund_id}", json={"outcome": "rejected"}, headers=admin_headers
    )
    assert repeat.status_code == 409


@pytest.mark.anyio
async def test_second_cancellation_does_not_duplicate_refund(
    client, booked, client_headers, frozen_now
):
    lesson, _ = booked
    first = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=client_headers)
    assert first.status_code == 200

    second = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=client_headers)
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "REFUND_EXISTS"


@pytest.mark.anyio
async def test_refund_rejection_restores_payout_eligibility(
    client, db_session, booked, client_headers, admin_headers, frozen_now, gateway
):
    lesson, payment = booked
    response = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=client_headers)
    (refund_id,) = response.json()["refund_ids"]

    decided = await client.post(
        f"/admin/decisions/refund/{refund_id}",
        json={"outcome": "rejected", "note": "attended"},
        headers=admin_headers,
    )
    assert decided.json()["status"] == "rejected"
    assert gateway.refunds == []

    db_session.refresh(payment)
    assert payment.payout_excluded is False
    assert payment.payout_excluded_reason is None


@pytest.mark.anyio
async def test_refund_processor_failure_keeps_refund_pending(
    client, db_session, booked, client_headers, admin_headers, frozen_now, gateway, dispatcher
):
    lesson, _ = booked
    response = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=client_headers)
    (refund_id,) = response.json()["refund_ids"]

    gateway.fail_refunds = True
    decided = await client.post(
        f"/admin/decisions/refund/{refund_id}", json={"outcome": "approved"}, headers=admin_headers
    )
    assert decided.status_code == 503

    refund = db_session.get(Refund, refund_id, populate_existing=True)
    assert refund.refund_status == RefundStatus.PENDING
    assert dispatcher.events() == []


@pytest.mark.anyio
async def test_client_cancel_after_deadline_has_no_refund(
    client, db_session, booked, client_headers, frozen_now
):
    lesson, payment = booked
    frozen_now(AFTER_DEADLINE)

    response = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=client_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["refund_ids"] == []
    assert body["decisions"][0]["amount"] == 0
    assert body["decisions"][0]["reason_code"] == "CLIENT_AFTER_DEADLINE"

    db_session.refresh(payment)
    assert payment.payout_excluded is False


@pytest.mark.anyio
async def test_trainer_cancellation_refunds_every_booking(
    client, db_session, trainer_user, client_user, make_user, make_lesson, make_payment, trainer_headers, frozen_now
):
    frozen_now(AFTER_DEADLINE)
    lesson = make_lesson(trainer_user)
    first = make_payment(lesson, client_user, amount=10000, net_amount=9640)
    second = make_payment(lesson, make_user(UserRole.CLIENT), amount=10000, net_amount=9700)

    response = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=trainer_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["cancelled_by"] == "trainer"
    assert [d["amount"] for d in body["decisions"]] == [9640, 9700]
    assert len(body["refund_ids"]) == 2

    for payment in (first, second):
        db_session.refresh(payment)
        assert payment.payout_excluded_reason == PayoutExclusionReason.TRAINER_CANCELLED
    db_session.refresh(lesson)
    assert lesson.status == LessonStatus.CANCELLED


@pytest.mark.anyio
async def test_no_show_reported_by_trainer(
    client, db_session, booked, client_user, trainer_headers, client_headers
):
    lesson, payment = booked
    response = await client.post(
        f"/lessons/{lesson.id}/cancel",
        json={"no_show": True, "payer_id": client_user.id},
        headers=trainer_headers,
    )
    assert response.status_code == 200
    assert response.json()["decisions"][0]["reason_code"] == "CLIENT_NO_SHOW"
    assert response.json()["refund_ids"] == []

    forbidden = await client.post(
        f"/lessons/{lesson.id}/cancel", json={"no_show": True, "payer_id": client_user.id}, headers=client_headers
    )
    assert forbidden.status_code == 403


@pytest.mark.anyio
async def test_non_admin_cannot_decide(client, booked, client_headers, trainer_headers, frozen_now):
    lesson, _ = booked
    response = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=client_headers)
    (refund_id,) = response.json()["refund_ids"]

    decided = await client.post(
        f"/admin/decisions/refund/{refund_id}", json={"outcome": "approved"}, headers=trainer_headers
    )
    assert decided.status_code == 403
    assert decided.json()["error"]["code"] == "ADMIN_REQUIRED"


@pytest.mark.anyio
async def test_dashboard_reports_window_and_pending(
    client, db_session, trainer_user, client_user, make_lesson, make_payment, admin_headers, verify_trainer
):
    lesson = make_lesson(trainer_user)
    make_payment(lesson, client_user, amount=10000, net_amount=9500)
    make_payment(lesson, client_user, amount=5000, net_amount=4800)
    verify_trainer(trainer_user, VerificationStatus.PENDING)

    response = await client.get("/admin/dashboard", headers=admin_headers)
    assert response.status_code == 200
    stats = response.json()
    assert stats["window"]["gross_revenue"] == 15000
    assert stats["window"]["fee_revenue"] == 2300
    assert stats["window"]["anomalies"] == 0
    assert stats["all_time"]["lesson_count"] == 2
    assert stats["pending_identity_verifications"] == 1
    assert stats["active_trainers"] == 1
    assert stats["active_clients"] == 1

    past = await client.get(
        "/admin/dashboard",
        params={"window_start": "2020-01-01T00:00:00Z", "window_end": "2020-02-01T00:00:00Z"},
        headers=admin_headers,
    )
    assert past.json()["window"]["lesson_count"] == 0
    assert past.json()["pending_identity_verifications"] == 1


@pytest.mark.anyio
async def test_dashboard_requires_admin(client, client_headers):
    response = await client.get("/admin/dashboard", headers=client_headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "INSUFFICIENT_ROLE"


@pytest.mark.anyio
async def test_lesson_completion_by_trainer(client, db_session, trainer_user, make_lesson, trainer_headers):
    lesson = make_lesson(trainer_user)
    response = await client.post(f"/lessons/{lesson.id}/complete", headers=trainer_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    again = await client.post(f"/lessons/{lesson.id}/complete", headers=trainer_headers)
    assert again.status_code == 409
    assert db_session.get(Lesson, lesson.id, populate_existing=True).status == LessonStatus.COMPLETED


@pytest.mark.anyio
async def test_lesson_payments_visible_to_trainer_and_admin(
    client, booked, trainer_headers, admin_headers, client_headers
):
    lesson, payment = booked
    for headers in (trainer_headers, admin_headers):
        response = await client.get(f"/lessons/{lesson.id}/payments", headers=headers)
        assert response.status_code == 200
        (row,) = response.json()
        assert row["id"] == payment.id
        assert row["net_amount"] == 9640
        assert row["payout_excluded"] is False

    denied = await client.get(f"/lessons/{lesson.id}/payments", headers=client_headers)
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "NOT_LESSON_TRAINER"


@pytest.mark.anyio
async def test_admin_refund_queue_lists_pending(
    client, booked, client_headers, admin_headers, frozen_now
):
    lesson, payment = booked
    response = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=client_headers)
    (refund_id,) = response.json()["refund_ids"]

    queue = await client.get("/admin/refunds", headers=admin_headers)
    assert queue.status_code == 200
    (row,) = queue.json()
    assert row["id"] == refund_id
    assert row["payment_id"] == payment.id
    assert row["refund_status"] == "pending"

    await client.post(f"/admin/decisions/refund/{refund_id}", json={"outcome": "rejected"}, headers=admin_headers)
    assert (await client.get("/admin/refunds", headers=admin_headers)).json() == []
    rejected = await client.get("/admin/refunds", params={"status": "rejected"}, headers=admin_headers)
    assert [r["id"] for r in rejected.json()] == [refund_id]

    assert (await client.get("/admin/refunds", headers=client_headers)).status_code == 403


@pytest.mark.anyio
async def test_trainer_cancellation_takes_over_pending_client_refund(
    client, db_session, booked, client_headers, trainer_headers, admin_headers, frozen_now, gateway
):
    lesson, payment = booked
    response = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=client_headers)
    (refund_id,) = response.json()["refund_ids"]

    trainer_cancel = await client.post(f"/lessons/{lesson.id}/cancel", json={}, headers=trainer_headers)
    assert trainer_cancel.status_code == 200
    assert trainer_cancel.json()["refund_ids"] == [refund_id]

    refund = db_session.get(Refund, refund_id, populate_existing=True)
    assert refund.cancelled_by == "trainer"
    assert refund.reason_code == "TRAINER_CANCELLED"
    assert refund.refund_status == RefundStatus.PENDING
    db_session.refresh(payment)
    assert payment.payout_excluded_reason == PayoutExclusionReason.TRAINER_CANCELLED

    rejected = await client.post(
        f"/admin/decisions/refund/{refund_id}", json={"outcome": "rejected"}, headers=admin_headers
    )
    assert rejected.status_code == 409
    assert rejected.json()["error"]["code"] == "TRAINER_REFUND_REQUIRED"
    db_session.refresh(refund)
    assert refund.refund_status == RefundStatus.PENDING

    approved = await client.post(
        f"/admin/decisions/refund/{refund_id}", json={"outcome": "approved"}, headers=admin_headers
    )
    assert approved.json()["status"] == "refunded"
    assert gateway.refunds[0]["amount"] == 9640


@pytest.mark.anyio
async def test_refund_queue_rejects_unknown_status(client, admin_headers):
    response = await client.get("/admin/refunds", params={"status": "all"}, headers=admin_headers)
    assert response.status_code == 422
