"""Test configuration."""
import hashlib
import hmac
import json
import os
import time
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import UTC, date, datetime, time as time_type, timedelta
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# --- Default env config
os.environ.setdefault("DATABASE_URL", "sqlite:///./settlement_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PSP_WEBHOOK_SECRET", "test-psp-secret")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LESSON_TIMEZONE", "Asia/Tokyo")

from app.main import app  # noqa: E402
from app.core.actor import Actor  # noqa: E402
from app.db import get_db  # noqa: E402
from app.models import (  # noqa: E402
    ApiKey,
    Base,
    IdentityVerification,
    Lesson,
    LessonStatus,
    Payment,
    PaymentStatus,
    User,
    UserRole,
    VerificationStatus,
)
from app.services.gateways import GatewayResult, set_gateway  # noqa: E402
from app.services.notifications import set_dispatcher  # noqa: E402
from app.utils.apikey import hash_key  # noqa: E402
from app.utils.errors import UpstreamUnavailable  # noqa: E402


class FakeGateway:
    """Records processor calls instead of reaching Stripe."""

    def __init__(self) -> None:
        self.checkouts: list[int] = []
        self.refunds: list[dict] = []
        self.transfers: list[dict] = []
        self.fail_refunds = False

    def start_checkout(self, lesson, payment) -> GatewayResult:
        self.checkouts.append(payment.id)
        return GatewayResult(reference=f"pi_test_{payment.id}", client_secret=f"secret_{payment.id}")

    def refund(self, payment, amount, idempotency_key) -> GatewayResult:
        if self.fail_refunds:
            raise UpstreamUnavailable("Payment processor unavailable", code="PSP_UNAVAILABLE")
        self.refunds.append({"payment_id": payment.id, "amount": amount, "idempotency_key": idempotency_key})
        return GatewayResult(reference=f"re_test_{len(self.refunds)}")

    def transfer(self, *, trainer_id, net_payout, idempotency_key, destination=None) -> GatewayResult:
        self.transfers.append(
            {
                "trainer_id": trainer_id,
                "net_payout": net_payout,
                "idempotency_key": idempotency_key,
                "destination": destination,
            }
        )
        return GatewayResult(reference=f"tr_test_{len(self.transfers)}")


class RecordingDispatcher:
    def __init__(self) -> None:
        self.sent: list[tuple[str, int | None, dict]] = []

    def dispatch(self, event, recipient_id, payload) -> None:
        self.sent.append((event, recipient_id, payload))

    def events(self) -> list[str]:
        return [event for event, _, _ in self.sent]


@pytest.fixture
def engine() -> Iterator[Engine]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        test_engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Iterator[Session]:
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)
    session = factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        try:
            yield db_session
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture(autouse=True)
def gateway() -> Iterator[FakeGateway]:
    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    set_gateway(None)


@pytest.fixture(autouse=True)
def dispatcher() -> Iterator[RecordingDispatcher]:
    recorder = RecordingDispatcher()
    set_dispatcher(recorder)
    yield recorder
    set_dispatcher(None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=user.role, label=f"user:{user.id}")


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(role: UserRole = UserRole.CLIENT, **overrides) -> User:
        suffix = uuid4().hex[:8]
        user = User(
            username=overrides.pop("username", f"{role.value}-{suffix}"),
            email=overrides.pop("email", f"{role.value}-{suffix}@example.com"),
            role=role,
            **overrides,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _factory


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., dict[str, str]]:
    """Create a key for ``user`` and return the request headers using it."""

    def _factory(user: User, *, is_active: bool = True, expires_at: datetime | None = None) -> dict[str, str]:
        token = f"lsn_{uuid4().hex}"
        db_session.add(
            ApiKey(
                name=f"key-{uuid4().hex}",
                prefix=token[:10],
                key_hash=hash_key(token),
                user_id=user.id,
                is_active=is_active,
                expires_at=expires_at,
            )
        )
        db_session.commit()
        return {"Authorization": f"Bearer {token}"}

    return _factory


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user(UserRole.ADMIN)


@pytest.fixture
def trainer_user(make_user) -> User:
    return make_user(UserRole.TRAINER, stripe_account_id="acct_test_trainer")


@pytest.fixture
def client_user(make_user) -> User:
    return make_user(UserRole.CLIENT)


@pytest.fixture
def admin_headers(make_api_key, admin_user) -> dict[str, str]:
    return make_api_key(admin_user)


@pytest.fixture
def trainer_headers(make_api_key, trainer_user) -> dict[str, str]:
    return make_api_key(trainer_user)


@pytest.fixture
def client_headers(make_api_key, client_user) -> dict[str, str]:
    return make_api_key(client_user)


@pytest.fixture
def verify_trainer(db_session: Session) -> Callable[..., IdentityVerification]:
    def _factory(trainer: User, status: VerificationStatus = VerificationStatus.APPROVED) -> IdentityVerification:
        verification = IdentityVerification(
            trainer_id=trainer.id,
            status=status,
            document_type="passport",
            document_url="https://files.example.com/id/passport.png",
        )
        db_session.add(verification)
        db_session.commit()
        db_session.refresh(verification)
        return verification

    return _factory


@pytest.fixture
def make_lesson(db_session: Session) -> Callable[..., Lesson]:
    def _factory(
        trainer: User,
        *,
        price: int = 10000,
        lesson_date: date = date(2025, 6, 10),
        status: LessonStatus = LessonStatus.SCHEDULED,
    ) -> Lesson:
        lesson = Lesson(
            trainer_id=trainer.id,
            title="Morning strength session",
            price=price,
            date=lesson_date,
            time=time_type(10, 0),
            status=status,
        )
        db_session.add(lesson)
        db_session.commit()
        db_session.refresh(lesson)
        return lesson

    return _factory


@pytest.fixture
def make_payment(db_session: Session) -> Callable[..., Payment]:
    def _factory(
        lesson: Lesson,
        payer: User,
        *,
        amount: int | None = None,
        net_amount: int | None = None,
        status: PaymentStatus = PaymentStatus.PAID,
        paid_at: datetime | None = None,
    ) -> Payment:
        gross = lesson.price if amount is None else amount
        paid = status != PaymentStatus.PENDING
        payment = Payment(
            lesson_id=lesson.id,
            payer_id=payer.id,
            amount=gross,
            net_amount=net_amount if net_amount is not None else (gross - gross * 36 // 1000 if paid else None),
            status=status,
            psp_ref=f"pi_{uuid4().hex}",
            paid_at=paid_at if paid_at is not None else (datetime.now(UTC) - timedelta(days=45) if paid else None),
        )
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)
        return payment

    return _factory


@pytest.fixture
def signed_webhook() -> Callable[..., tuple[bytes, dict[str, str]]]:
    """Return ``(body, headers)`` signed with the configured webhook secret."""

    def _sign(payload: dict, *, secret: str | None = None, timestamp: str | None = None):
        body = json.dumps(payload).encode()
        ts = timestamp or str(int(time.time()))
        key = (secret or os.environ["PSP_WEBHOOK_SECRET"]).encode()
        signature = hmac.new(key, f"{ts}.{body.decode()}".encode(), hashlib.sha256).hexdigest()
        return body, {
            "Content-Type": "application/json",
            "X-PSP-Signature": signature,
            "X-PSP-Timestamp": ts,
        }

    return _sign


@pytest.fixture
def as_actor() -> Callable[[User], Actor]:
    return actor_for
