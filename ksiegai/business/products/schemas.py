from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ksiegai.core.money import VatRateCode


ProductType = Literal["GOODS", "SERVICE"]


class ProductCreate(BaseModel):
    business_profile_id: UUID
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    unit: str = Field(default="szt", min_length=1, max_length=16)
    unit_price_net: Decimal = Field(ge=Decimal("0"))
    vat_rate: VatRateCode = "23"
    product_type: ProductType = "SERVICE"


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    unit: str | None = Field(default=None, min_length=1, max_length=16)
    unit_price_net: Decimal | None = Field(default=None, ge=Decimal("0"))
    vat_rate: VatRateCode | None = None
    product_type: ProductType | None = None


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_profile_id: UUID
    name: str
    description: str | None
    unit: str
    unit_price_net: Decimal | str
    vat_rate: str
    product_type: ProductType | str
    is_active: bool | str
    created_at: datetime
    updated_at: datetime
