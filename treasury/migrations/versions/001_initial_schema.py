"""Initial schema: associations, expense workflow, ledger and loan repayments.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    ]


def upgrade() -> None:
    # Collaborator stand-ins
    op.create_table(
        "associations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("workflow_rules", sa.JSON(), nullable=True),
        sa.Column("expense_types", sa.JSON(), nullable=True),
        sa.Column("low_balance_threshold", sa.Numeric(precision=12, scale=2), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "association_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("association_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="membre"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["association_id"], ["associations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_association_members_association_id", "association_id"),
        sa.Index("ix_association_members_user_id", "user_id"),
        sa.Index("idx_member_association_user", "association_id", "user_id", unique=True),
    )

    # Ledger (append-only)
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("association_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("net_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(length=9), nullable=False, server_default="completed"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("expense_request_id", sa.Integer(), nullable=True),
        sa.Column("loan_repayment_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["association_id"], ["associations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_ledger_entries_association_id", "association_id"),
        sa.Index("ix_ledger_entries_type", "type"),
        sa.Index("ix_ledger_entries_expense_request_id", "expense_request_id"),
        sa.Index("idx_ledger_association_type_status", "association_id", "type", "status"),
    )

    op.create_table(
        "expense_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("association_id", sa.Integer(), nullable=False),
        sa.Column("section_id", sa.Integer(), nullable=True),
        sa.Column("requester_id", sa.Integer(), nullable=False),
        sa.Column("beneficiary_id", sa.Integer(), nullable=True),
        sa.Column("beneficiary_external", sa.JSON(), nullable=True),
        sa.Column("expense_type", sa.String(length=50), nullable=False),
        sa.Column("expense_subtype", sa.String(length=100), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("expected_impact", sa.Text(), nullable=True),
        sa.Column("urgency_level", sa.String(length=8), nullable=False, server_default="normal"),
        sa.Column("amount_requested", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("amount_approved", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("is_loan", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("loan_terms", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=22), nullable=False, server_default="pending"),
        sa.Column("required_validators", sa.JSON(), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("payment_mode", sa.String(length=7), nullable=True),
        sa.Column("payment_method", sa.String(length=15), nullable=True),
        sa.Column("manual_payment_reference", sa.String(length=255), nullable=True),
        sa.Column("payment_validated_by", sa.Integer(), nullable=True),
        sa.Column("payment_failure_reason", sa.Text(), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["association_id"], ["associations.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["ledger_entries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_expense_requests_association_id", "association_id"),
        sa.Index("ix_expense_requests_requester_id", "requester_id"),
        sa.Index("ix_expense_requests_beneficiary_id", "beneficiary_id"),
        sa.Index("ix_expense_requests_expense_type", "expense_type"),
        sa.Index("ix_expense_requests_is_loan", "is_loan"),
        sa.Index("ix_expense_requests_status", "status"),
        sa.Index("idx_expense_association_status", "association_id", "status"),
        sa.Index("idx_expense_loan", "association_id", "is_loan", "status"),
    )

    # Validation history (append-only)
    op.create_table(
        "validation_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expense_request_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("decision", sa.String(length=14), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("amount_approved", sa.Numeric(precision=12, scale=2), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["expense_request_id"], ["expense_requests.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_validation_records_expense_request_id", "expense_request_id"),
        sa.Index("idx_validation_request_role", "expense_request_id", "role"),
    )

    op.create_table(
        "loan_repayments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expense_request_id", sa.Integer(), nullable=False),
        sa.Column("installment_number", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("principal_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("interest_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("excess_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("payment_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=9), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(length=30), nullable=True),
        sa.Column("manual_reference", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("validated_by", sa.Integer(), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["expense_request_id"], ["expense_requests.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["ledger_entries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_loan_repayments_expense_request_id", "expense_request_id"),
        sa.Index("ix_loan_repayments_due_date", "due_date"),
        sa.Index("ix_loan_repayments_status", "status"),
        sa.Index("idx_repayment_request_status", "expense_request_id", "status"),
        sa.Index(
            "idx_repayment_request_installment", "expense_request_id", "installment_number"
        ),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_audit_logs_entity_id", "entity_id"),
    )


def downgrade() -> None:
    for table in (
        "audit_logs",
        "loan_repayments",
        "validation_records",
        "expense_requests",
        "ledger_entries",
        "association_members",
        "associations",
    ):
        op.drop_table(table)
