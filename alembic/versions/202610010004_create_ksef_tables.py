"""create KSeF received invoice and sync tables

Revision ID: 202610010004
Revises: 202610010003
Create Date: 2026-10-01 10:30:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010004"
down_revision: str | None = "202610010003"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "ksef_received_invoices",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("ksef_number", sa.String(length=35), nullable=False),
        sa.Column("subject_type", sa.String(length=16), nullable=False),
        sa.Column("invoice_number", sa.String(length=256), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("seller_nip", sa.String(length=16), nullable=False),
        sa.Column("seller_name", sa.String(length=255), nullable=True),
        sa.Column("buyer_nip", sa.String(length=16), nullable=True),
        sa.Column("total_gross_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="PLN"),
        sa.Column("permanent_storage_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("invoice_xml", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_profile_id", "ksef_number", name="uq_ksef_received_invoices_number"),
    )
    op.create_index(
        "ix_ksef_received_invoices_profile_issue_date",
        "ksef_received_invoices",
        ["business_profile_id", "issue_date"],
    )

    op.create_table(
        "ksef_sync_state",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("subject_type", sa.String(length=16), nullable=False),
        sa.Column("high_water_mark", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoices_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_profile_id", "subject_type", name="uq_ksef_sync_state_profile_subject"),
        sa.CheckConstraint("subject_type IN ('subject1', 'subject2', 'subject3')", name="ck_ksef_sync_state_subject_type"),
    )

    op.create_table(
        "ksef_sync_runs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("trigger", sa.String(length=16), nullable=False, server_default="scheduled"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("profiles_synced", sa.Integer(), nullable=False),
        sa.Column("profiles_successful", sa.Integer(), nullable=False),
        sa.Column("profiles_failed", sa.Integer(), nullable=False),
        sa.Column("total_invoices_synced", sa.Integer(), nullable=False),
        sa.Column("results", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ksef_sync_runs_started_at", "ksef_sync_runs", ["started_at"])


def downgrade() -> None:
    op.drop_index("ix_ksef_sync_runs_started_at", table_name="ksef_sync_runs")
    op.drop_table("ksef_sync_runs")
    op.drop_table("ksef_sync_state")
    op.drop_index("ix_ksef_received_invoices_profile_issue_date", table_name="ksef_received_invoices")
    op.drop_table("ksef_received_invoices")
