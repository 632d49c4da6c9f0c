"""create cash register tables

Revision ID: 202610010003
Revises: 202610010002
Create Date: 2026-10-01 10:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010003"
down_revision: str | None = "202610010002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "cash_accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="PLN"),
        sa.Column("opening_balance", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("opening_balance >= 0", name="ck_cash_accounts_opening_nonnegative"),
    )
    op.create_index("ix_cash_accounts_profile", "cash_accounts", ["business_profile_id"])

    op.create_table(
        "cash_documents",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("cash_account_id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(length=2), nullable=False),
        sa.Column("document_number", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("document_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("counterparty_name", sa.String(length=255), nullable=True),
        sa.Column("counterparty_nip", sa.String(length=10), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=False, server_default="other"),
        sa.Column("linked_invoice_id", sa.Uuid(), nullable=True),
        sa.Column("is_tax_deductible", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("is_approved", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("approved_by", sa.String(length=128), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("cancelled_by", sa.String(length=128), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["cash_account_id"], ["cash_accounts.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["linked_invoice_id"], ["invoices.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_profile_id", "document_number", name="uq_cash_documents_number"),
        sa.CheckConstraint("type IN ('KP', 'KW')", name="ck_cash_documents_type"),
        sa.CheckConstraint("amount > 0", name="ck_cash_documents_amount_positive"),
    )
    op.create_index("ix_cash_documents_account_date", "cash_documents", ["cash_account_id", "document_date"])

    op.create_table(
        "cash_reconciliations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("cash_account_id", sa.Uuid(), nullable=False),
        sa.Column("reconciliation_date", sa.Date(), nullable=False),
        sa.Column("system_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("counted_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("difference", sa.Numeric(18, 2), nullable=False),
        sa.Column("result", sa.String(length=16), nullable=False),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["cash_account_id"], ["cash_accounts.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("result IN ('match', 'surplus', 'shortage')", name="ck_cash_reconciliations_result"),
    )
    op.create_index("ix_cash_reconciliations_account", "cash_reconciliations", ["cash_account_id", "reconciliation_date"])


def downgrade() -> None:
    op.drop_index("ix_cash_reconciliations_account", table_name="cash_reconciliations")
    op.drop_table("cash_reconciliations")
    op.drop_index("ix_cash_documents_account_date", table_name="cash_documents")
    op.drop_table("cash_documents")
    op.drop_index("ix_cash_accounts_profile", table_name="cash_accounts")
    op.drop_table("cash_accounts")
