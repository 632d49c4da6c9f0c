from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


CashDocumentType = Literal["KP", "KW"]
ReconciliationResult = Literal["match", "surplus", "shortage"]


class CashAccountCreate(BaseModel):
    business_profile_id: UUID
    name: str = Field(min_length=1, max_length=255)
    opening_balance: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))


class CashAccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_profile_id: UUID
    name: str
    currency: str
    opening_balance: Decimal | str
    is_active: bool
    created_at: datetime
    balance: Decimal | str | None = None


class CashDocumentCreate(BaseModel):
    cash_account_id: UUID
    type: CashDocumentType
    amount: Decimal = Field(gt=Decimal("0"))
    document_date: date
    description: str = Field(min_length=1)
    counterparty_name: str | None = Field(default=None, max_length=255)
    counterparty_nip: str | None = None
    category: str = Field(default="other", min_length=1, max_length=64)
    linked_invoice_id: UUID | None = None
    is_tax_deductible: bool = True


class CashDocumentCancelRequest(BaseModel):
    reason: str = Field(min_length=1)


class CashDocumentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_profile_id: UUID
    cash_account_id: UUID
    type: CashDocumentType | str
    document_number: str
    amount: Decimal | str
    document_date: date
    description: str
    counterparty_name: str | None
    counterparty_nip: str | None
    category: str
    linked_invoice_id: UUID | None
    is_tax_deductible: bool
    is_approved: bool
    approved_by: str | None
    approved_at: datetime | None
    is_cancelled: bool
    cancelled_by: str | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_by: str
    created_at: datetime


class CashReconciliationCreate(BaseModel):
    reconciliation_date: date
    counted_balance: Decimal = Field(ge=Decimal("0"))
    explanation: str | None = None


class CashReconciliationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_profile_id: UUID
    cash_account_id: UUID
    reconciliation_date: date
    system_balance: Decimal | str
    counted_balance: Decimal | str
    difference: Decimal | str
    result: ReconciliationResult | str
    explanation: str | None
    created_by: str
    created_at: datetime


class CashRegisterSummary(BaseModel):
    cash_account_id: UUID
    start_date: date | None
    end_date: date | None
    total_kp: Decimal
    total_kw: Decimal
    net_change: Decimal
    current_balance: Decimal
    document_count: int
