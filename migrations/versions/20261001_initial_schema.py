"""members, applications, loans, repayment ledger, sequences and audit log

Revision ID: 20261001_initial_schema
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
TIMESTAMP = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "sequence_counters",
        sa.Column("name", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("value", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
        sa.CheckConstraint("value >= 0", name="ck_sequence_counter_value_nonneg"),
    )

    op.create_table(
        "memberships",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("display_id", sa.String(length=32), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("father_or_husband_name", sa.String(length=255), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("occupation", sa.String(length=255), nullable=True),
        sa.Column("mobile_number", sa.String(length=20), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("aadhar", sa.String(length=12), nullable=True),
        sa.Column("pan", sa.String(length=10), nullable=True),
        sa.Column("address", JSONType, nullable=False),
        sa.Column("document_refs", JSONType, nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("reviewed_at", TIMESTAMP, nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
        sa.UniqueConstraint("display_id", name="uq_memberships_display_id"),
        sa.UniqueConstraint("mobile_number", name="uq_memberships_mobile_number"),
        sa.UniqueConstraint("aadhar", name="uq_memberships_aadhar"),
        sa.UniqueConstraint("pan", name="uq_memberships_pan"),
        sa.CheckConstraint("version >= 1", name="ck_membership_version_positive"),
        sa.CheckConstraint("age IS NULL OR age >= 0", name="ck_membership_age_nonneg"),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_membership_status"),
    )
    op.create_index("ix_memberships_full_name", "memberships", ["full_name"])
    op.create_index("ix_memberships_status", "memberships", ["status"])

    op.create_table(
        "loan_applications",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("application_number", sa.String(length=32), nullable=False),
        sa.Column("membership_id", sa.Uuid(), nullable=False),
        sa.Column("requested_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("tenure_days", sa.Integer(), nullable=False),
        sa.Column("installment_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=True),
        sa.Column("mobile_number", sa.String(length=20), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("bank_account_number", sa.String(length=34), nullable=True),
        sa.Column("nominee", JSONType, nullable=False),
        sa.Column("guarantor", JSONType, nullable=False),
        sa.Column("co_applicant", JSONType, nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="under_review"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("reviewed_at", TIMESTAMP, nullable=True),
        sa.Column("approved_at", TIMESTAMP, nullable=True),
        sa.Column("loan_id", sa.Uuid(), nullable=True),
        sa.Column("approve_idempotency_key", sa.String(length=100), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
        sa.ForeignKeyConstraint(["membership_id"], ["memberships.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("application_number", name="uq_loan_applications_application_number"),
        sa.UniqueConstraint("loan_id", name="uq_loan_applications_loan_id"),
        sa.CheckConstraint("requested_amount > 0", name="ck_loan_app_amount_positive"),
        sa.CheckConstraint("tenure_days > 0", name="ck_loan_app_tenure_positive"),
        sa.CheckConstraint("installment_amount > 0", name="ck_loan_app_installment_positive"),
        sa.CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        sa.CheckConstraint(
            "status IN ('under_review', 'approved', 'rejected')",
            name="ck_loan_app_status",
        ),
    )
    op.create_index("ix_loan_applications_membership_id", "loan_applications", ["membership_id"])
    op.create_index("ix_loan_applications_status", "loan_applications", ["status"])

    op.create_table(
        "loans",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("loan_account_number", sa.String(length=32), nullable=False),
        sa.Column("membership_id", sa.Uuid(), nullable=False),
        sa.Column("application_id", sa.Uuid(), nullable=False),
        sa.Column("principal", sa.Numeric(18, 2), nullable=False),
        sa.Column("tenure_days", sa.Integer(), nullable=False),
        sa.Column("installment_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("remaining_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("posting_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("approved_at", TIMESTAMP, nullable=True),
        sa.Column("activated_at", TIMESTAMP, nullable=True),
        sa.Column("closed_at", TIMESTAMP, nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("reviewed_at", TIMESTAMP, nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
        sa.ForeignKeyConstraint(["membership_id"], ["memberships.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["application_id"], ["loan_applications.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("loan_account_number", name="uq_loans_loan_account_number"),
        sa.UniqueConstraint("application_id", name="uq_loans_application_id"),
        sa.CheckConstraint("principal > 0", name="ck_loan_principal_positive"),
        sa.CheckConstraint("tenure_days > 0", name="ck_loan_tenure_positive"),
        sa.CheckConstraint("installment_amount > 0", name="ck_loan_installment_positive"),
        sa.CheckConstraint(
            "remaining_amount >= 0 AND remaining_amount <= principal",
            name="ck_loan_remaining_bounds",
        ),
        sa.CheckConstraint("posting_count >= 0", name="ck_loan_posting_count_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_loan_version_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'active', 'closed', 'rejected')",
            name="ck_loan_status",
        ),
    )
    op.create_index("ix_loans_membership_id", "loans", ["membership_id"])
    op.create_index("ix_loans_status", "loans", ["status"])

    op.create_table(
        "repayments",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("loan_id", sa.Uuid(), nullable=False),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_date", TIMESTAMP, nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("is_late_fee", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recorded_by", sa.String(length=255), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("receipt_ref", sa.String(length=1024), nullable=True),
        sa.Column("idempotency_key", sa.String(length=100), nullable=True),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.ForeignKeyConstraint(["loan_id"], ["loans.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("loan_id", "sequence_no", name="uq_repayment_loan_sequence"),
        sa.UniqueConstraint("loan_id", "idempotency_key", name="uq_repayment_loan_idempotency"),
        sa.CheckConstraint("amount > 0", name="ck_repayment_amount_positive"),
        sa.CheckConstraint("sequence_no >= 1", name="ck_repayment_sequence_positive"),
        sa.CheckConstraint(
            "payment_method IN ('cash', 'bank_transfer', 'upi', 'cheque', 'other')",
            name="ck_repayment_payment_method",
        ),
    )
    op.create_index("ix_repayments_loan_id", "repayments", ["loan_id"])
    op.create_index("ix_repayments_payment_date", "repayments", ["payment_date"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", JSONType, nullable=True),
        sa.Column("new_value", JSONType, nullable=True),
        sa.Column("changes", JSONType, nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", TIMESTAMP, nullable=False),
    )
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_repayments_payment_date", table_name="repayments")
    op.drop_index("ix_repayments_loan_id", table_name="repayments")
    op.drop_table("repayments")
    op.drop_index("ix_loans_status", table_name="loans")
    op.drop_index("ix_loans_membership_id", table_name="loans")
    op.drop_table("loans")
    op.drop_index("ix_loan_applications_status", table_name="loan_applications")
    op.drop_index("ix_loan_applications_membership_id", table_name="loan_applications")
    op.drop_table("loan_applications")
    op.drop_index("ix_memberships_status", table_name="memberships")
    op.drop_index("ix_memberships_full_name", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("sequence_counters")
