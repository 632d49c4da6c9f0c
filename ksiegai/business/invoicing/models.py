from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ksiegai.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("business_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    number: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(16), nullable=False, default="INCOME", server_default="INCOME")
    document_type: Mapped[str] = mapped_column(String(16), nullable=False, default="VAT", server_default="VAT")
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
    )
    counterparty_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    counterparty_nip: Mapped[str | None] = mapped_column(String(10), nullable=True)
    issue_date: Mapped[date] = mapped_column(Date(), nullable=False)
    sale_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PLN", server_default="PLN")
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("1"), server_default="1")
    payment_method: Mapped[str] = mapped_column(String(16), nullable=False, default="TRANSFER", server_default="TRANSFER")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT", server_default="DRAFT")
    total_net: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"), server_default="0")
    total_vat: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"), server_default="0")
    total_gross: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"), server_default="0")
    amount_due: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"), server_default="0")
    posting_status: Mapped[str] = mapped_column(String(16), nullable=False, default="UNPOSTED", server_default="UNPOSTED")
    posting_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_journal_entry.id", ondelete="SET NULL"),
        nullable=True,
    )
    ksef_status: Mapped[str] = mapped_column(String(16), nullable=False, default="NOT_SENT", server_default="NOT_SENT")
    ksef_reference_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ksef_number: Mapped[str | None] = mapped_column(String(35), nullable=True)
    corrected_invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    lines: Mapped[list[InvoiceLine]] = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="InvoiceLine.position",
    )

    __table_args__ = (
        UniqueConstraint("business_profile_id", "transaction_type", "number", name="uq_invoices_profile_number"),
        CheckConstraint("transaction_type IN ('INCOME', 'EXPENSE')", name="ck_invoices_transaction_type"),
        CheckConstraint("document_type IN ('VAT', 'CORRECTION')", name="ck_invoices_document_type"),
        CheckConstraint("status IN ('DRAFT', 'ISSUED', 'OVERDUE', 'PAID', 'VOID')", name="ck_invoices_status"),
        CheckConstraint(
            "posting_status IN ('UNPOSTED', 'POSTED', 'NEEDS_REVIEW', 'ERROR')",
            name="ck_invoices_posting_status",
        ),
        CheckConstraint("ksef_status IN ('NOT_SENT', 'SUBMITTED', 'ACCEPTED', 'REJECTED')", name="ck_invoices_ksef_status"),
        CheckConstraint("exchange_rate > 0", name="ck_invoices_exchange_rate_positive"),
        Index("ix_invoices_profile_issue_date", "business_profile_id", "issue_date"),
        Index("ix_invoices_posting_status", "business_profile_id", "posting_status"),
    )


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(16), nullable=False, default="szt", server_default="szt")
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit_price_net: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    vat_rate: Mapped[str] = mapped_column(String(4), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    invoice: Mapped[Invoice] = relationship("Invoice", back_populates="lines")

    __table_args__ = (Index("ix_invoice_lines_invoice", "invoice_id"),)
