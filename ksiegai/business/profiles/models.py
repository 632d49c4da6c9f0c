from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ksiegai.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BusinessProfile(Base):
    __tablename__ = "business_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    nip: Mapped[str] = mapped_column(String(10), nullable=False)
    regon: Mapped[str | None] = mapped_column(String(14), nullable=True)
    street: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    country: Mapped[str] = mapped_column(String(2), nullable=False, default="PL", server_default="PL")
    entity_type: Mapped[str] = mapped_column(String(16), nullable=False, default="JDG", server_default="JDG")
    tax_type: Mapped[str] = mapped_column(String(16), nullable=False, default="LINIOWY", server_default="LINIOWY")
    ryczalt_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    vat_status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE", server_default="ACTIVE")
    is_default: Mapped[bool] = mapped_column(nullable=False, default=False, server_default="false")
    ksef_enabled: Mapped[bool] = mapped_column(nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("owner_user_id", "nip", name="uq_business_profiles_owner_nip"),
        CheckConstraint("entity_type IN ('JDG', 'SPZOO')", name="ck_business_profiles_entity_type"),
        CheckConstraint("tax_type IN ('SKALA', 'LINIOWY', 'RYCZALT')", name="ck_business_profiles_tax_type"),
        CheckConstraint("vat_status IN ('ACTIVE', 'EXEMPT')", name="ck_business_profiles_vat_status"),
        Index("ix_business_profiles_owner", "owner_user_id"),
    )
