from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


EntityType = Literal["JDG", "SPZOO"]
TaxType = Literal["SKALA", "LINIOWY", "RYCZALT"]
VatStatus = Literal["ACTIVE", "EXEMPT"]

RYCZALT_RATES = {
    Decimal("17"),
    Decimal("15"),
    Decimal("14"),
    Decimal("12.5"),
    Decimal("12"),
    Decimal("10"),
    Decimal("8.5"),
    Decimal("5.5"),
    Decimal("3"),
    Decimal("2"),
}


class BusinessProfileCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    nip: str = Field(min_length=10, max_length=16)
    regon: str | None = Field(default=None, max_length=14)
    street: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str = Field(default="PL", min_length=2, max_length=2)
    entity_type: EntityType = "JDG"
    tax_type: TaxType = "LINIOWY"
    ryczalt_rate: Decimal | None = None
    vat_status: VatStatus = "ACTIVE"
    ksef_enabled: bool = False


class BusinessProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    nip: str | None = Field(default=None, min_length=10, max_length=16)
    regon: str | None = Field(default=None, max_length=14)
    street: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = Field(default=None, min_length=2, max_length=2)
    entity_type: EntityType | None = None
    tax_type: TaxType | None = None
    ryczalt_rate: Decimal | None = None
    vat_status: VatStatus | None = None
    ksef_enabled: bool | None = None


class BusinessProfileRead(BaseModel):
    id: UUID
    owner_user_id: str
    name: str
    nip: str
    regon: str | None
    street: str | None
    city: str | None
    postal_code: str | None
    country: str
    entity_type: EntityType | str
    tax_type: TaxType | str
    ryczalt_rate: Decimal | str | None
    vat_status: VatStatus | str
    is_default: bool | str
    ksef_enabled: bool | str
    created_at: datetime
    updated_at: datetime
