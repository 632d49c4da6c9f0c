"""create business profiles, customers, products and audit events

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=True),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=128), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("trace_id", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
    op.create_index("ix_audit_events_profile_created", "audit_events", ["business_profile_id", "created_at"])

    op.create_table(
        "business_profiles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("nip", sa.String(length=10), nullable=False),
        sa.Column("regon", sa.String(length=14), nullable=True),
        sa.Column("street", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("postal_code", sa.String(length=16), nullable=True),
        sa.Column("country", sa.String(length=2), nullable=False, server_default="PL"),
        sa.Column("entity_type", sa.String(length=16), nullable=False, server_default="JDG"),
        sa.Column("tax_type", sa.String(length=16), nullable=False, server_default="LINIOWY"),
        sa.Column("ryczalt_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("vat_status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("ksef_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_user_id", "nip", name="uq_business_profiles_owner_nip"),
        sa.CheckConstraint("entity_type IN ('JDG', 'SPZOO')", name="ck_business_profiles_entity_type"),
        sa.CheckConstraint("tax_type IN ('SKALA', 'LINIOWY', 'RYCZALT')", name="ck_business_profiles_tax_type"),
        sa.CheckConstraint("vat_status IN ('ACTIVE', 'EXEMPT')", name="ck_business_profiles_vat_status"),
    )
    op.create_index("ix_business_profiles_owner", "business_profiles", ["owner_user_id"])

    op.create_table(
        "customers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("nip", sa.String(length=10), nullable=True),
        sa.Column("street", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("postal_code", sa.String(length=16), nullable=True),
        sa.Column("country", sa.String(length=2), nullable=False, server_default="PL"),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("customer_type", sa.String(length=16), nullable=False, server_default="BUYER"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_customers_profile_name", "customers", ["business_profile_id", "name"])
    op.create_index("ix_customers_profile_nip", "customers", ["business_profile_id", "nip"])

    op.create_table(
        "products",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_profile_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("unit", sa.String(length=16), nullable=False, server_default="szt"),
        sa.Column("unit_price_net", sa.Numeric(18, 2), nullable=False),
        sa.Column("vat_rate", sa.String(length=4), nullable=False, server_default="23"),
        sa.Column("product_type", sa.String(length=16), nullable=False, server_default="SERVICE"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["business_profile_id"], ["business_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_profile_id", "name", name="uq_products_profile_name"),
        sa.CheckConstraint("unit_price_net >= 0", name="ck_products_price_nonnegative"),
    )
    op.create_index("ix_products_profile_active", "products", ["business_profile_id", "is_active"])


def downgrade() -> None:
    op.drop_index("ix_products_profile_active", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_customers_profile_nip", table_name="customers")
    op.drop_index("ix_customers_profile_name", table_name="customers")
    op.drop_table("customers")
    op.drop_index("ix_business_profiles_owner", table_name="business_profiles")
    op.drop_table("business_profiles")
    op.drop_index("ix_audit_events_profile_created", table_name="audit_events")
    op.drop_index("ix_audit_events_entity", table_name="audit_events")
    op.drop_table("audit_events")
