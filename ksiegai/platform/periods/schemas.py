from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ksiegai.platform.ledger.schemas import PeriodStatus


class AccountingPeriodRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_profile_id: UUID
    year: int
    month: int
    status: PeriodStatus | str
    closed_at: datetime | None
    closed_by: str | None
    locked_at: datetime | None
    locked_by: str | None
    lock_reason: str | None
    total_revenue: Decimal | str | None
    total_expenses: Decimal | str | None
    net_result: Decimal | str | None


class PeriodLockRequest(BaseModel):
    reason: str = Field(min_length=1)


class PeriodCheck(BaseModel):
    year: int
    month: int
    period_id: UUID | None
    status: PeriodStatus | str
    tax_deadline: date
    deadline_passed: bool
    days_overdue: int
    is_locked: bool
    has_unposted_invoices: bool


class AutoLockRequest(BaseModel):
    business_profile_id: UUID
    today: date | None = None
    dry_run: bool = False
    max_days_overdue: int = Field(default=365, ge=0)
    skip_if_unposted: bool = True


class PeriodDecision(BaseModel):
    year: int
    month: int
    reason: str


class AutoLockResult(BaseModel):
    business_profile_id: UUID
    dry_run: bool
    locked: list[PeriodDecision] = Field(default_factory=list)
    skipped: list[PeriodDecision] = Field(default_factory=list)
    errors: list[PeriodDecision] = Field(default_factory=list)
