"""create revenue ledger + payout workflow tables

Revision ID: 4c1e7a2b9d30
Revises:
Create Date: <AUTO>
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy import text

# revision identifiers, used by Alembic.
revision: str = "4c1e7a2b9d30"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


INDEX_ACTIVE_AGREEMENT = "uq_revenue_agreements_active_instructor"
INDEX_PENDING_PAYOUT = "uq_payout_requests_pending_instructor"


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _jsonb() -> postgresql.JSONB:
    return postgresql.JSONB(astext_type=sa.Text())


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    # ------------------------------------------------------------
    # 1) users (identity mirror)
    # ------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'student'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    # ------------------------------------------------------------
    # 2) platform_settings (single row)
    # ------------------------------------------------------------
    op.create_table(
        "platform_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("platform_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("instructor_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("default_currency", sa.String(length=10), nullable=True),
        sa.Column("minimum_payouts", _jsonb(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    # ------------------------------------------------------------
    # 3) revenue_agreements
    # ------------------------------------------------------------
    op.create_table(
        "revenue_agreements",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("instructor_id", _uuid(), nullable=False),
        sa.Column("agreement_type", sa.String(length=20), nullable=False, server_default=sa.text("'custom'")),
        sa.Column("platform_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("instructor_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("previous_agreement_id", _uuid(), nullable=True),
        sa.Column("rejection_reason", sa.String(length=2000), nullable=True),
        sa.Column("admin_notes", sa.String(length=5000), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", _uuid(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["instructor_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["previous_agreement_id"], ["revenue_agreements.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "platform_percentage >= 0 AND platform_percentage <= 100 "
            "AND instructor_percentage >= 0 AND instructor_percentage <= 100",
            name="ck_revenue_agreements_percentage_bounds",
        ),
    )
    op.create_index("ix_revenue_agreements_instructor_id", "revenue_agreements", ["instructor_id"])
    op.create_index("ix_revenue_agreements_status", "revenue_agreements", ["status"])
    op.create_index(
        "ix_revenue_agreements_instructor_status", "revenue_agreements", ["instructor_id", "status"]
    )
    # at most one approved+active agreement per instructor
    op.create_index(
        INDEX_ACTIVE_AGREEMENT,
        "revenue_agreements",
        ["instructor_id"],
        unique=True,
        postgresql_where=text("is_active AND status = 'approved'"),
    )

    # ------------------------------------------------------------
    # 4) payout_requests
    # ------------------------------------------------------------
    op.create_table(
        "payout_requests",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("instructor_id", _uuid(), nullable=False),
        sa.Column("requested_amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("earning_ids", _jsonb(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("payment_method", sa.String(length=50), nullable=False),
        sa.Column("receiver_name", sa.String(length=100), nullable=False),
        sa.Column("receiver_phone", sa.String(length=20), nullable=False),
        sa.Column("receiver_location", sa.String(length=200), nullable=True),
        sa.Column("account_details", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("rejection_reason", sa.String(length=1000), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=1000), nullable=True),
        sa.Column("proof_original_name", sa.String(length=255), nullable=True),
        sa.Column("proof_stored_name", sa.String(length=255), nullable=True),
        sa.Column("proof_url", sa.String(length=500), nullable=True),
        sa.Column("proof_mime_type", sa.String(length=100), nullable=True),
        sa.Column("proof_size", sa.BigInteger(), nullable=True),
        sa.Column("proof_uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("proof_uploaded_by", _uuid(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", _uuid(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("security_flags", _jsonb(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["instructor_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["proof_uploaded_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["processed_by"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("requested_amount > 0", name="ck_payout_requests_amount_positive"),
    )
    op.create_index("ix_payout_requests_instructor_id", "payout_requests", ["instructor_id"])
    op.create_index("ix_payout_requests_status", "payout_requests", ["status"])
    op.create_index(
        "ix_payout_requests_instructor_status_requested",
        "payout_requests",
        ["instructor_id", "status", "requested_at"],
    )
    op.create_index("ix_payout_requests_status_requested", "payout_requests", ["status", "requested_at"])
    # at most one pending request per instructor
    op.create_index(
        INDEX_PENDING_PAYOUT,
        "payout_requests",
        ["instructor_id"],
        unique=True,
        postgresql_where=text("status = 'pending'"),
    )

    # ------------------------------------------------------------
    # 5) instructor_earnings / platform_earnings (unique per payment)
    # ------------------------------------------------------------
    op.create_table(
        "instructor_earnings",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("payment_id", _uuid(), nullable=False),
        sa.Column("instructor_id", _uuid(), nullable=False),
        sa.Column("student_id", _uuid(), nullable=True),
        sa.Column("student_name", sa.String(length=200), nullable=True),
        sa.Column("course_id", _uuid(), nullable=False),
        sa.Column("course_name", sa.String(length=300), nullable=True),
        sa.Column("section_id", _uuid(), nullable=True),
        sa.Column("section_name", sa.String(length=300), nullable=True),
        sa.Column("agreement_id", _uuid(), nullable=True),
        sa.Column("agreement_type", sa.String(length=20), nullable=False, server_default=sa.text("'global'")),
        sa.Column("agreement_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("student_paid_amount", sa.BigInteger(), nullable=False),
        sa.Column("base_amount", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("wallet_discount_amount", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_percentage", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("instructor_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("platform_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("instructor_amount", sa.BigInteger(), nullable=False),
        sa.Column("platform_amount", sa.BigInteger(), nullable=False),
        sa.Column("instructor_discount", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("platform_discount", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_method", sa.String(length=50), nullable=False, server_default=sa.text("'other'")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'accrued'")),
        sa.Column("payout_request_id", _uuid(), nullable=True),
        sa.Column("accrued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(length=2000), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["instructor_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["agreement_id"], ["revenue_agreements.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["payout_request_id"], ["payout_requests.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("payment_id", name="uq_instructor_earnings_payment"),
        sa.CheckConstraint(
            "instructor_amount >= 0 AND platform_amount >= 0 AND student_paid_amount >= 0",
            name="ck_instructor_earnings_non_negative",
        ),
    )
    op.create_index("ix_instructor_earnings_instructor_id", "instructor_earnings", ["instructor_id"])
    op.create_index("ix_instructor_earnings_status", "instructor_earnings", ["status"])
    op.create_index(
        "ix_instructor_earnings_instructor_status", "instructor_earnings", ["instructor_id", "status"]
    )
    op.create_index(
        "ix_instructor_earnings_instructor_course", "instructor_earnings", ["instructor_id", "course_id"]
    )
    op.create_index("ix_instructor_earnings_payout_request", "instructor_earnings", ["payout_request_id"])

    op.create_table(
        "platform_earnings",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("payment_id", _uuid(), nullable=False),
        sa.Column("instructor_id", _uuid(), nullable=False),
        sa.Column("course_id", _uuid(), nullable=False),
        sa.Column("agreement_id", _uuid(), nullable=True),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("total_amount", sa.BigInteger(), nullable=False),
        sa.Column("platform_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("instructor_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("platform_amount", sa.BigInteger(), nullable=False),
        sa.Column("instructor_amount", sa.BigInteger(), nullable=False),
        sa.Column("platform_discount", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_method", sa.String(length=50), nullable=False, server_default=sa.text("'other'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["instructor_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["agreement_id"], ["revenue_agreements.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("payment_id", name="uq_platform_earnings_payment"),
    )
    op.create_index(
        "ix_platform_earnings_instructor_created", "platform_earnings", ["instructor_id", "created_at"]
    )

    # ------------------------------------------------------------
    # 6) payout_audit_logs (append-only)
    # ------------------------------------------------------------
    op.create_table(
        "payout_audit_logs",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("entity_type", sa.String(length=30), nullable=False),
        sa.Column("entity_id", _uuid(), nullable=False),
        sa.Column("action", sa.String(length=30), nullable=False),
        sa.Column("actor_id", _uuid(), nullable=True),
        sa.Column("actor_role", sa.String(length=20), nullable=False),
        sa.Column("previous_state", _jsonb(), nullable=True),
        sa.Column("new_state", _jsonb(), nullable=True),
        sa.Column("changed_fields", _jsonb(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("reason", sa.String(length=2000), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_payout_audit_logs_entity_type", "payout_audit_logs", ["entity_type"])
    op.create_index("ix_payout_audit_logs_entity_id", "payout_audit_logs", ["entity_id"])
    op.create_index("ix_payout_audit_logs_action", "payout_audit_logs", ["action"])
    op.create_index("ix_payout_audit_logs_actor_id", "payout_audit_logs", ["actor_id"])
    op.create_index("ix_payout_audit_logs_timestamp", "payout_audit_logs", ["timestamp"])
    op.create_index(
        "ix_payout_audit_logs_entity_timestamp",
        "payout_audit_logs",
        ["entity_type", "entity_id", "timestamp"],
    )
    op.create_index("ix_payout_audit_logs_actor_timestamp", "payout_audit_logs", ["actor_id", "timestamp"])

    # UPDATE / DELETE on the audit log raise at the database level
    op.execute(
        """
        CREATE OR REPLACE FUNCTION payout_audit_logs_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'payout_audit_logs is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_payout_audit_logs_append_only
        BEFORE UPDATE OR DELETE ON payout_audit_logs
        FOR EACH ROW EXECUTE FUNCTION payout_audit_logs_append_only();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_payout_audit_logs_append_only ON payout_audit_logs;")
    op.execute("DROP FUNCTION IF EXISTS payout_audit_logs_append_only();")
    op.drop_table("payout_audit_logs")

    op.drop_index("ix_platform_earnings_instructor_created", table_name="platform_earnings")
    op.drop_table("platform_earnings")
    op.drop_table("instructor_earnings")

    op.drop_index(INDEX_PENDING_PAYOUT, table_name="payout_requests")
    op.drop_table("payout_requests")

    op.drop_index(INDEX_ACTIVE_AGREEMENT, table_name="revenue_agreements")
    op.drop_table("revenue_agreements")

    op.drop_table("platform_settings")
    op.drop_table("users")
