from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


SubjectType = Literal["subject1", "subject2", "subject3"]
SUBJECT_TYPES: tuple[str, ...] = ("subject1", "subject2", "subject3")


class KsefSubmitRequest(BaseModel):
    token: str | None = Field(default=None, min_length=1)


class KsefConfirmRequest(BaseModel):
    ksef_number: str = Field(min_length=35, max_length=35)


class KsefQrCodeRead(BaseModel):
    url: str
    label: str
    png_base64: str


class KsefTokensStore(BaseModel):
    business_profile_id: UUID
    access_token: str = Field(min_length=1)
    access_token_expires_in: int = Field(gt=0)
    refresh_token: str = Field(min_length=1)
    refresh_token_expires_in: int = Field(gt=0)
    context_type: Literal["nip", "pesel", "krs", "onip"] = "nip"
    context_value: str | None = None


class KsefTokenStatusRead(BaseModel):
    business_profile_id: UUID
    has_tokens: bool
    access_token_valid: bool | None = None
    refresh_token_valid: bool | None = None
    access_token_expires_in: int | None = None
    refresh_token_expires_in: int | None = None


class KsefReceivedInvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_profile_id: UUID
    ksef_number: str
    subject_type: str
    invoice_number: str
    issue_date: date
    seller_nip: str
    seller_name: str | None
    buyer_nip: str | None
    total_gross_amount: Decimal
    currency: str
    permanent_storage_date: datetime


class SubjectSyncResult(BaseModel):
    subject_type: str
    invoices_synced: int = 0
    new_high_water_mark: datetime | None = None
    errors: list[str] = Field(default_factory=list)
    attempts: int = 1


class ProfileSyncResult(BaseModel):
    business_profile_id: UUID
    profile_name: str
    success: bool
    subjects: list[SubjectSyncResult] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    error: str | None = None

    @property
    def invoices_synced(self) -> int:
        return sum(item.invoices_synced for item in self.subjects)


class KsefSyncStats(BaseModel):
    total_profiles: int = 0
    successful_profiles: int = 0
    failed_profiles: int = 0
    total_invoices_synced: int = 0
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    is_running: bool = False


class KsefSyncRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    trigger: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    profiles_synced: int
    profiles_successful: int
    profiles_failed: int
    total_invoices_synced: int
