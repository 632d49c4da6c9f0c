from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ksiegai.core.money import VatRateCode


TransactionType = Literal["INCOME", "EXPENSE"]
DocumentType = Literal["VAT", "CORRECTION"]
InvoiceStatus = Literal["DRAFT", "ISSUED", "OVERDUE", "PAID", "VOID"]
PostingStatus = Literal["UNPOSTED", "POSTED", "NEEDS_REVIEW", "ERROR"]
KsefStatus = Literal["NOT_SENT", "SUBMITTED", "ACCEPTED", "REJECTED"]
PaymentMethod = Literal["TRANSFER", "CASH", "CARD"]


class InvoiceLineInput(BaseModel):
    product_id: UUID | None = None
    name: str | None = Field(default=None, min_length=1, max_length=255)
    unit: str | None = Field(default=None, min_length=1, max_length=16)
    quantity: Decimal = Field(gt=Decimal("0"))
    unit_price_net: Decimal | None = Field(default=None, ge=Decimal("0"))
    vat_rate: VatRateCode | None = None


class CorrectionLineInput(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    unit: str = Field(default="szt", min_length=1, max_length=16)
    quantity: Decimal
    unit_price_net: Decimal = Field(ge=Decimal("0"))
    vat_rate: VatRateCode = "23"


class InvoiceCreate(BaseModel):
    business_profile_id: UUID
    transaction_type: TransactionType = "INCOME"
    number: str | None = Field(default=None, min_length=1, max_length=64)
    customer_id: UUID | None = None
    counterparty_name: str | None = Field(default=None, max_length=255)
    counterparty_nip: str | None = None
    issue_date: date
    sale_date: date | None = None
    due_date: date | None = None
    currency: str = Field(default="PLN", min_length=3, max_length=3)
    exchange_rate: Decimal = Field(default=Decimal("1"), gt=Decimal("0"))
    payment_method: PaymentMethod = "TRANSFER"
    notes: str | None = None
    lines: list[InvoiceLineInput] = Field(min_length=1)


class InvoiceUpdate(BaseModel):
    number: str | None = Field(default=None, min_length=1, max_length=64)
    customer_id: UUID | None = None
    counterparty_name: str | None = Field(default=None, max_length=255)
    counterparty_nip: str | None = None
    issue_date: date | None = None
    sale_date: date | None = None
    due_date: date | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    exchange_rate: Decimal | None = Field(default=None, gt=Decimal("0"))
    payment_method: PaymentMethod | None = None
    notes: str | None = None
    lines: list[InvoiceLineInput] | None = Field(default=None, min_length=1)


class InvoiceVoidRequest(BaseModel):
    reason: str = Field(min_length=1)


class MarkInvoicePaidRequest(BaseModel):
    amount: Decimal = Field(gt=Decimal("0"))
    paid_on: date | None = None


class CorrectionCreate(BaseModel):
    reason: str = Field(min_length=1)
    issue_date: date | None = None
    lines: list[CorrectionLineInput] = Field(min_length=1)


class InvoiceLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_id: UUID
    position: int
    product_id: UUID | None
    name: str
    unit: str
    quantity: Decimal | str
    unit_price_net: Decimal | str
    vat_rate: str
    net_amount: Decimal | str
    vat_amount: Decimal | str
    gross_amount: Decimal | str


class InvoiceRead(BaseModel):
    id: UUID
    business_profile_id: UUID
    number: str
    transaction_type: TransactionType | str
    document_type: DocumentType | str
    customer_id: UUID | None
    counterparty_name: str | None
    counterparty_nip: str | None
    issue_date: date
    sale_date: date | None
    due_date: date | None
    currency: str
    exchange_rate: Decimal | str
    payment_method: str
    status: InvoiceStatus | str
    total_net: Decimal | str
    total_vat: Decimal | str
    total_gross: Decimal | str
    amount_due: Decimal | str
    posting_status: PostingStatus | str
    posting_error: str | None
    journal_entry_id: UUID | None
    ksef_status: KsefStatus | str
    ksef_reference_number: str | None
    ksef_number: str | None
    corrected_invoice_id: UUID | None
    notes: str | None
    created_at: datetime
    updated_at: datetime
    lines: list[InvoiceLineRead] = Field(default_factory=list)


class RefreshOverdueResponse(BaseModel):
    business_profile_id: UUID
    checked: int
    marked_overdue: list[UUID] = Field(default_factory=list)


class VatSummaryRow(BaseModel):
    vat_rate: str
    net_amount: Decimal
    vat_amount: Decimal
    gross_amount: Decimal


class VatSummaryRead(BaseModel):
    invoice_id: UUID
    rows: list[VatSummaryRow] = Field(default_factory=list)
    total_net: Decimal
    total_vat: Decimal
    total_gross: Decimal
