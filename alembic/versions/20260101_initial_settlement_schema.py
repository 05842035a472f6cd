"""initial settlement schema"""
from alembic import op
import sqlalchemy as sa

revision = "20260101_initial_settlement_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(length=100), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("role", sa.Enum("client", "trainer", "admin", name="userrole"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("stripe_account_id", sa.String(length=255), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False, unique=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_api_keys_prefix", "api_keys", ["prefix"])
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    op.create_table(
        "lessons",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trainer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time", sa.Time(), nullable=False),
        sa.Column(
            "status", sa.Enum("scheduled", "cancelled", "completed", name="lessonstatus"), nullable=False
        ),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="ck_lesson_price_non_negative"),
    )
    op.create_index("ix_lessons_trainer_id", "lessons", ["trainer_id"])
    op.create_index("ix_lessons_trainer_status", "lessons", ["trainer_id", "status"])

    op.create_table(
        "payout_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trainer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("total_sales", sa.Integer(), nullable=False),
        sa.Column("gross_eligible_amount", sa.Integer(), nullable=False),
        sa.Column("transfer_fee", sa.Integer(), nullable=False),
        sa.Column("net_payout", sa.Integer(), nullable=False),
        sa.Column(
            "status", sa.Enum("pending", "approved", "paid", "rejected", name="payoutstatus"), nullable=False
        ),
        sa.Column("payout_eligible_date", sa.Date(), nullable=False),
        sa.Column("transfer_ref", sa.String(length=128), nullable=True, unique=True),
        sa.Column("decided_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("gross_eligible_amount > 0", name="ck_payout_gross_positive"),
        sa.CheckConstraint("net_payout = gross_eligible_amount - transfer_fee", name="ck_payout_net_formula"),
    )
    op.create_index("ix_payout_requests_trainer_id", "payout_requests", ["trainer_id"])
    op.create_index("ix_payout_requests_created_at", "payout_requests", ["created_at"])
    op.create_index("ix_payout_requests_status", "payout_requests", ["status"])
    op.create_index(
        "uq_payout_requests_active_trainer",
        "payout_requests",
        ["trainer_id"],
        unique=True,
        sqlite_where=sa.text("status IN ('pending', 'approved')"),
        postgresql_where=sa.text("status IN ('pending', 'approved')"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lesson_id", sa.Integer(), sa.ForeignKey("lessons.id"), nullable=False),
        sa.Column("payer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("net_amount", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", "succeeded", "completed", "paid_out", "failed", name="paymentstatus"),
            nullable=False,
        ),
        sa.Column("psp_ref", sa.String(length=128), nullable=True, unique=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payout_request_id", sa.Integer(), sa.ForeignKey("payout_requests.id"), nullable=True),
        sa.Column("payout_excluded", sa.Boolean(), nullable=False),
        sa.Column(
            "payout_excluded_reason",
            sa.Enum("refund", "trainer_cancelled", name="payoutexclusionreason"),
            nullable=True,
        ),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
        sa.CheckConstraint(
            "net_amount IS NULL OR (net_amount >= 0 AND net_amount <= amount)",
            name="ck_payment_net_within_amount",
        ),
    )
    op.create_index("ix_payments_lesson_id", "payments", ["lesson_id"])
    op.create_index("ix_payments_payer_id", "payments", ["payer_id"])
    op.create_index("ix_payments_payout_request_id", "payments", ["payout_request_id"])
    op.create_index("ix_payments_created_at", "payments", ["created_at"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_lesson_payer", "payments", ["lesson_id", "payer_id"])

    op.create_table(
        "refunds",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("requested_amount", sa.Integer(), nullable=False),
        sa.Column("refund_amount", sa.Integer(), nullable=False),
        sa.Column(
            "refund_status", sa.Enum("pending", "refunded", "rejected", name="refundstatus"), nullable=False
        ),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.String(length=20), nullable=False),
        sa.Column("reason_code", sa.String(length=50), nullable=False),
        sa.Column("processor_ref", sa.String(length=128), nullable=True),
        sa.Column("decided_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("refund_amount >= 0", name="ck_refund_amount_non_negative"),
    )
    op.create_index("ix_refunds_payment_id", "refunds", ["payment_id"])
    op.create_index("ix_refunds_created_at", "refunds", ["created_at"])
    op.create_index("ix_refunds_status", "refunds", ["refund_status"])
    op.create_index(
        "uq_refunds_live_payment",
        "refunds",
        ["payment_id"],
        unique=True,
        sqlite_where=sa.text("refund_status != 'rejected'"),
        postgresql_where=sa.text("refund_status != 'rejected'"),
    )

    op.create_table(
        "identity_verifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trainer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("not_submitted", "pending", "approved", "rejected", name="verificationstatus"),
            nullable=False,
        ),
        sa.Column("document_type", sa.String(length=50), nullable=False),
        sa.Column("document_url", sa.String(length=1024), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("decided_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_identity_verifications_trainer_id", "identity_verifications", ["trainer_id"])
    op.create_index(
        "ix_identity_verifications_trainer_created", "identity_verifications", ["trainer_id", "created_at"]
    )
    op.create_index("ix_identity_verifications_status", "identity_verifications", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])

    op.create_table(
        "psp_webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("event_id", sa.String(length=100), nullable=False),
        sa.Column("kind", sa.String(length=50), nullable=False),
        sa.Column("psp_ref", sa.String(length=100), nullable=True),
        sa.Column("raw_json", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("provider", "event_id", name="uq_psp_webhook_events_provider_event_id"),
    )
    op.create_index("ix_psp_webhook_events_received", "psp_webhook_events", ["received_at"])
    op.create_index("ix_psp_webhook_events_kind", "psp_webhook_events", ["kind"])


def downgrade() -> None:
    for table in (
        "psp_webhook_events",
        "audit_logs",
        "identity_verifications",
        "refunds",
        "payments",
        "payout_requests",
        "lessons",
        "api_keys",
        "users",
    ):
        op.drop_table(table)
