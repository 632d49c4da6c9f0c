from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ksiegai.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KsefReceivedInvoice(Base):
    __tablename__ = "ksef_received_invoices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("business_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    ksef_number: Mapped[str] = mapped_column(String(35), nullable=False)
    subject_type: Mapped[str] = mapped_column(String(16), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(256), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date(), nullable=False)
    seller_nip: Mapped[str] = mapped_column(String(16), nullable=False)
    seller_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    buyer_nip: Mapped[str | None] = mapped_column(String(16), nullable=True)
    total_gross_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PLN", server_default="PLN")
    permanent_storage_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    invoice_xml: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("business_profile_id", "ksef_number", name="uq_ksef_received_invoices_number"),
        Index("ix_ksef_received_invoices_profile_issue_date", "business_profile_id", "issue_date"),
    )


class KsefSyncState(Base):
    __tablename__ = "ksef_sync_state"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("business_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    subject_type: Mapped[str] = mapped_column(String(16), nullable=False)
    high_water_mark: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    invoices_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("business_profile_id", "subject_type", name="uq_ksef_sync_state_profile_subject"),
        CheckConstraint("subject_type IN ('subject1', 'subject2', 'subject3')", name="ck_ksef_sync_state_subject_type"),
    )


class KsefSyncRun(Base):
    __tablename__ = "ksef_sync_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    trigger: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled", server_default="scheduled")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    profiles_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    profiles_successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    profiles_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_invoices_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    results: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (Index("ix_ksef_sync_runs_started_at", "started_at"),)
