"""create ledger, accounting period and invoice tables

Revision ID: 202610010002
Revises: 202610010001
Create Date: 2026-10-01 09:30:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010002"
down_revision: str | None = "202610010001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "ledger_account",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("parent_code", sa.String(length=32), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_profile_id", "code", name="uq_ledger_account_code"),
        sa.CheckConstraint("type IN ('ASSET', 'LIABILITY', 'EQUITY', 'REVENUE', 'EXPENSE')", name="ck_ledger_account_type"),
        sa.CheckConstraint("level >= 1", name="ck_ledger_account_level"),
    )
    op.create_index("ix_ledger_account_profile", "ledger_account", ["business_profile_id"])

    op.create_table(
        "accounting_period",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="OPEN"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.String(length=128), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(length=128), nullable=True),
        sa.Column("lock_reason", sa.Text(), nullable=True),
        sa.Column("total_revenue", sa.Numeric(18, 2), nullable=True),
        sa.Column("total_expenses", sa.Numeric(18, 2), nullable=True),
        sa.Column("net_result", sa.Numeric(18, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_profile_id", "year", "month", name="uq_accounting_period_month"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_accounting_period_month"),
        sa.CheckConstraint("status IN ('OPEN', 'CLOSED', 'LOCKED')", name="ck_accounting_period_status"),
    )

    op.create_table(
        "ledger_journal_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("period_id", sa.Uuid(), nullable=False),
        sa.Column("entry_number", sa.String(length=32), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("source_type", sa.String(length=32), nullable=False, server_default="MANUAL"),
        sa.Column("source_id", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="DRAFT"),
        sa.Column("event_id", sa.Uuid(), nullable=False),
        sa.Column("reversal_of_id", sa.Uuid(), nullable=True),
        sa.Column("reversal_reason", sa.Text(), nullable=True),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("posted_by", sa.String(length=128), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["period_id"], ["accounting_period.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["event_id"], ["audit_events.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["ledger_journal_entry.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_profile_id", "entry_number", name="uq_ledger_entry_number"),
        sa.CheckConstraint("status IN ('DRAFT', 'POSTED', 'REVERSED')", name="ck_ledger_entry_status"),
    )
    op.create_index("ix_ledger_entry_profile_date", "ledger_journal_entry", ["business_profile_id", "entry_date"])
    op.create_index("ix_ledger_entry_source", "ledger_journal_entry", ["source_type", "source_id"])
    op.create_index("ix_ledger_entry_period", "ledger_journal_entry", ["period_id"])

    op.create_table(
        "ledger_journal_line",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("journal_entry_id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("debit_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("credit_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="PLN"),
        sa.Column("fx_rate", sa.Numeric(18, 6), nullable=False, server_default="1"),
        sa.Column("amount_pln", sa.Numeric(18, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("counterparty_id", sa.Uuid(), nullable=True),
        sa.Column("cost_center", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["ledger_journal_entry.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["account_id"], ["ledger_account.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["counterparty_id"], ["customers.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("debit_amount >= 0", name="ck_ledger_line_debit_nonnegative"),
        sa.CheckConstraint("credit_amount >= 0", name="ck_ledger_line_credit_nonnegative"),
        sa.CheckConstraint(
            "((debit_amount > 0 AND credit_amount = 0) OR (credit_amount > 0 AND debit_amount = 0))",
            name="ck_ledger_line_single_sided",
        ),
        sa.CheckConstraint("fx_rate > 0", name="ck_ledger_line_fx_positive"),
    )
    op.create_index("ix_ledger_line_account", "ledger_journal_line", ["account_id"])
    op.create_index("ix_ledger_line_entry", "ledger_journal_line", ["journal_entry_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("number", sa.String(length=64), nullable=False),
        sa.Column("transaction_type", sa.String(length=16), nullable=False, server_default="INCOME"),
        sa.Column("document_type", sa.String(length=16), nullable=False, server_default="VAT"),
        sa.Column("customer_id", sa.Uuid(), nullable=True),
        sa.Column("counterparty_name", sa.String(length=255), nullable=True),
        sa.Column("counterparty_nip", sa.String(length=10), nullable=True),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("sale_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="PLN"),
        sa.Column("exchange_rate", sa.Numeric(18, 6), nullable=False, server_default="1"),
        sa.Column("payment_method", sa.String(length=16), nullable=False, server_default="TRANSFER"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="DRAFT"),
        sa.Column("total_net", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("total_vat", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("total_gross", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("amount_due", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("posting_status", sa.String(length=16), nullable=False, server_default="UNPOSTED"),
        sa.Column("posting_error", sa.Text(), nullable=True),
        sa.Column("journal_entry_id", sa.Uuid(), nullable=True),
        sa.Column("ksef_status", sa.String(length=16), nullable=False, server_default="NOT_SENT"),
        sa.Column("ksef_reference_number", sa.String(length=128), nullable=True),
        sa.Column("ksef_number", sa.String(length=35), nullable=True),
        sa.Column("corrected_invoice_id", sa.Uuid(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["ledger_journal_entry.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["corrected_invoice_id"], ["invoices.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_profile_id", "transaction_type", "number", name="uq_invoices_profile_number"),
        sa.CheckConstraint("transaction_type IN ('INCOME', 'EXPENSE')", name="ck_invoices_transaction_type"),
        sa.CheckConstraint("document_type IN ('VAT', 'CORRECTION')", name="ck_invoices_document_type"),
        sa.CheckConstraint("status IN ('DRAFT', 'ISSUED', 'OVERDUE', 'PAID', 'VOID')", name="ck_invoices_status"),
        sa.CheckConstraint(
            "posting_status IN ('UNPOSTED', 'POSTED', 'NEEDS_REVIEW', 'ERROR')",
            name="ck_invoices_posting_status",
        ),
        sa.CheckConstraint("ksef_status IN ('NOT_SENT', 'SUBMITTED', 'ACCEPTED', 'REJECTED')", name="ck_invoices_ksef_status"),
        sa.CheckConstraint("exchange_rate > 0", name="ck_invoices_exchange_rate_positive"),
    )
    op.create_index("ix_invoices_profile_issue_date", "invoices", ["business_profile_id", "issue_date"])
    op.create_index("ix_invoices_posting_status", "invoices", ["business_profile_id", "posting_status"])

    op.create_table(
        "invoice_lines",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("invoice_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("product_id", sa.Uuid(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unit", sa.String(length=16), nullable=False, server_default="szt"),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=False),
        sa.Column("unit_price_net", sa.Numeric(18, 2), nullable=False),
        sa.Column("vat_rate", sa.String(length=4), nullable=False),
        sa.Column("net_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("vat_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("gross_amount", sa.Numeric(18, 2), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_invoice_lines_invoice", "invoice_lines", ["invoice_id"])


def downgrade() -> None:
    op.drop_index("ix_invoice_lines_invoice", table_name="invoice_lines")
    op.drop_table("invoice_lines")
    op.drop_index("ix_invoices_posting_status", table_name="invoices")
    op.drop_index("ix_invoices_profile_issue_date", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_ledger_line_entry", table_name="ledger_journal_line")
    op.drop_index("ix_ledger_line_account", table_name="ledger_journal_line")
    op.drop_table("ledger_journal_line")
    op.drop_index("ix_ledger_entry_period", table_name="ledger_journal_entry")
    op.drop_index("ix_ledger_entry_source", table_name="ledger_journal_entry")
    op.drop_index("ix_ledger_entry_profile_date", table_name="ledger_journal_entry")
    op.drop_table("ledger_journal_entry")
    op.drop_table("accounting_period")
    op.drop_index("ix_ledger_account_profile", table_name="ledger_account")
    op.drop_table("ledger_account")
