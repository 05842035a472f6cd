from datetime import UTC, datetime
from types import SimpleNamespace

import pytest

from app.models import UserRole, VerificationStatus
from app.services.eligibility import (
    EligibilityReason,
    authoritative_status,
    check_publish_eligibility,
    ensure_can_publish,
)
from app.utils.errors import Forbidden

SAME_TIME = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def _row(id, status, created_at=SAME_TIME):
    return SimpleNamespace(id=id, status=status, created_at=created_at)


def test_no_history_means_not_submitted():
    assert authoritative_status([]) == VerificationStatus.NOT_SUBMITTED


def test_latest_created_at_wins():
    history = [
        _row(5, VerificationStatus.APPROVED, datetime(2025, 5, 1, tzinfo=UTC)),
        _row(2, VerificationStatus.REJECTED, datetime(2025, 6, 1, tzinfo=UTC)),
    ]
    assert authoritative_status(history) == VerificationStatus.REJECTED


def test_created_at_tie_breaks_on_highest_id():
    history = [_row(7, VerificationStatus.PENDING), _row(3, VerificationStatus.APPROVED)]
    assert authoritative_status(history) == VerificationStatus.PENDING


def test_naive_timestamps_are_treated_as_utc():
    history = [
        _row(1, VerificationStatus.APPROVED, datetime(2025, 6, 2)),
        _row(2, VerificationStatus.REJECTED, datetime(2025, 6, 1, tzinfo=UTC)),
    ]
    assert authoritative_status(history) == VerificationStatus.APPROVED


def test_rejected_and_not_submitted_have_distinct_reasons(db_session, make_user, verify_trainer, as_actor):
    fresh = make_user(UserRole.TRAINER)
    with pytest.raises(Forbidden) as excinfo:
        ensure_can_publish(db_session, as_actor(fresh))
    assert excinfo.value.code == EligibilityReason.IDENTITY_NOT_SUBMITTED.value

    rejected = make_user(UserRole.TRAINER)
    verify_trainer(rejected, VerificationStatus.REJECTED)
    with pytest.raises(Forbidden) as excinfo:
        ensure_can_publish(db_session, as_actor(rejected))
    assert excinfo.value.code == EligibilityReason.IDENTITY_REJECTED.value
    assert excinfo.value.details == {"verification_status": "rejected"}
    assert "submit a new document" in excinfo.value.message


def test_status_is_reread_on_every_check(db_session, trainer_user, verify_trainer):
    verification = verify_trainer(trainer_user, VerificationStatus.PENDING)
    assert check_publish_eligibility(db_session, trainer_user.id).allowed is False

    verification.status = VerificationStatus.APPROVED
    db_session.commit()

    result = check_publish_eligibility(db_session, trainer_user.id)
    assert result.allowed is True
    assert result.reason_code == EligibilityReason.IDENTITY_APPROVED


def test_clients_cannot_publish(db_session, client_user, as_actor):
    with pytest.raises(Forbidden) as excinfo:
        ensure_can_publish(db_session, as_actor(client_user))
    assert excinfo.value.code == "TRAINER_REQUIRED"
