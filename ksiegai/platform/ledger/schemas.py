from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


LedgerAccountType = Literal["ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE"]
EntryStatus = Literal["DRAFT", "POSTED", "REVERSED"]
EntrySourceType = Literal["MANUAL", "INVOICE", "CASH", "REVERSAL", "ADJUSTMENT"]
PeriodStatus = Literal["OPEN", "CLOSED", "LOCKED"]


class LedgerAccountCreate(BaseModel):
    business_profile_id: UUID
    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=255)
    type: LedgerAccountType
    parent_code: str | None = Field(default=None, max_length=32)
    is_active: bool = True


class LedgerAccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_profile_id: UUID
    code: str
    name: str
    type: LedgerAccountType | str
    parent_code: str | None
    level: int
    is_active: bool
    created_at: datetime


class JournalLineInput(BaseModel):
    account_id: UUID
    debit_amount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    credit_amount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    currency: str = Field(default="PLN", min_length=3, max_length=3)
    fx_rate: Decimal = Field(default=Decimal("1"), gt=Decimal("0"))
    description: str | None = None
    counterparty_id: UUID | None = None
    cost_center: str | None = Field(default=None, max_length=64)


class JournalEntryCreate(BaseModel):
    business_profile_id: UUID
    entry_date: date
    description: str = Field(min_length=1)
    source_type: EntrySourceType = "MANUAL"
    source_id: str | None = None
    lines: list[JournalLineInput] = Field(min_length=2)
    post: bool = False


class JournalEntryLinesUpdate(BaseModel):
    description: str | None = Field(default=None, min_length=1)
    entry_date: date | None = None
    lines: list[JournalLineInput] = Field(min_length=2)


class JournalLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    journal_entry_id: UUID
    account_id: UUID
    position: int
    debit_amount: Decimal | str
    credit_amount: Decimal | str
    currency: str
    fx_rate: Decimal | str
    amount_pln: Decimal | str
    description: str | None
    counterparty_id: UUID | None
    cost_center: str | None
    created_at: datetime


class JournalEntryRead(BaseModel):
    id: UUID
    business_profile_id: UUID
    period_id: UUID
    entry_number: str
    entry_date: date
    description: str
    source_type: str
    source_id: str | None
    status: EntryStatus | str
    event_id: UUID
    reversal_of_id: UUID | None
    reversal_reason: str | None
    posted_at: datetime | None
    posted_by: str | None
    created_by: str
    created_at: datetime
    total_debit_pln: Decimal | str
    total_credit_pln: Decimal | str
    lines: list[JournalLineRead] = Field(default_factory=list)


class JournalEntryReverseRequest(BaseModel):
    reason: str = Field(min_length=1)
    reversal_date: date | None = None


class SeedChartAccountsRequest(BaseModel):
    business_profile_id: UUID


class AccountLedgerLine(BaseModel):
    entry_id: UUID
    entry_number: str
    entry_date: date
    description: str
    status: str
    debit_pln: Decimal
    credit_pln: Decimal
    balance: Decimal


class AccountLedgerRead(BaseModel):
    account: LedgerAccountRead
    start_date: date | None
    end_date: date | None
    opening_balance: Decimal
    closing_balance: Decimal
    lines: list[AccountLedgerLine] = Field(default_factory=list)
