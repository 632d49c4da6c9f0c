from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class TrialBalanceRow(BaseModel):
    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    debit_total: Decimal | str
    credit_total: Decimal | str
    net_balance: Decimal | str


class TrialBalanceReportRead(BaseModel):
    business_profile_id: UUID
    start_date: date | None
    end_date: date | None
    total_debits: Decimal | str
    total_credits: Decimal | str
    is_balanced: bool
    rows: list[TrialBalanceRow] = Field(default_factory=list)


class StatementRow(BaseModel):
    account_id: UUID
    account_code: str
    account_name: str
    amount: Decimal | str


class ProfitAndLossReportRead(BaseModel):
    business_profile_id: UUID
    start_date: date | None
    end_date: date | None
    total_revenue: Decimal | str
    total_expenses: Decimal | str
    net_result: Decimal | str
    revenue: list[StatementRow] = Field(default_factory=list)
    expenses: list[StatementRow] = Field(default_factory=list)


class BalanceSheetReportRead(BaseModel):
    business_profile_id: UUID
    as_of_date: date
    total_assets: Decimal | str
    total_liabilities: Decimal | str
    total_equity: Decimal | str
    retained_result: Decimal | str
    current_year_result: Decimal | str
    is_balanced: bool
    assets: list[StatementRow] = Field(default_factory=list)
    liabilities: list[StatementRow] = Field(default_factory=list)
    equity: list[StatementRow] = Field(default_factory=list)


class AgingBucket(BaseModel):
    label: str
    amount: Decimal | str
    count: int


class AgingRow(BaseModel):
    invoice_id: UUID
    invoice_number: str
    counterparty_name: str | None
    due_date: date | None
    days_overdue: int
    bucket: str
    amount_due: Decimal | str
    amount_due_pln: Decimal | str
    currency: str
    status: str


class ReceivablesAgingReportRead(BaseModel):
    business_profile_id: UUID
    as_of_date: date
    total_amount_due: Decimal | str
    buckets: list[AgingBucket]
    rows: list[AgingRow]
