"""Seed sample data for local development."""
from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta

from dotenv import load_dotenv

load_dotenv()

from app import models
from app.config import get_settings
from app.db import create_all, get_sessionmaker, init_engine


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    init_engine()
    create_all()
    session = get_sessionmaker()()

    try:
        admin = models.User(username="admin", email="admin@example.com", role=models.UserRole.ADMIN)
        trainer = models.User(
            username="coach-aiko",
            email="aiko@example.com",
            role=models.UserRole.TRAINER,
            stripe_account_id="acct_dev_trainer",
        )
        client = models.User(username="kenji", email="kenji@example.com", role=models.UserRole.CLIENT)
        session.add_all([admin, trainer, client])
        session.commit()

        verification = models.IdentityVerification(
            trainer_id=trainer.id,
            status=models.VerificationStatus.APPROVED,
            document_type="passport",
            document_url="https://files.example.com/id/aiko.png",
            decided_by=admin.id,
            decided_at=datetime.now(tz=UTC),
        )
        lesson = models.Lesson(
            trainer_id=trainer.id,
            title="Morning strength session",
            price=10000,
            date=date.today() + timedelta(days=14),
            time=time(9, 0),
        )
        session.add_all([verification, lesson])
        session.commit()
        print(f"Seed data inserted (admin={admin.id}, trainer={trainer.id}, client={client.id}, lesson={lesson.id}).")
    finally:
        session.close()


if __name__ == "__main__":
    main()
