from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


CustomerType = Literal["BUYER", "SUPPLIER", "BOTH"]


class CustomerCreate(BaseModel):
    business_profile_id: UUID
    name: str = Field(min_length=1, max_length=255)
    nip: str | None = None
    street: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str = Field(default="PL", min_length=2, max_length=2)
    email: str | None = None
    phone: str | None = None
    customer_type: CustomerType = "BUYER"


class CustomerUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    nip: str | None = None
    street: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = Field(default=None, min_length=2, max_length=2)
    email: str | None = None
    phone: str | None = None
    customer_type: CustomerType | None = None


class CustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_profile_id: UUID
    name: str
    nip: str | None
    street: str | None
    city: str | None
    postal_code: str | None
    country: str
    email: str | None
    phone: str | None
    customer_type: CustomerType | str
    is_active: bool | str
    created_at: datetime
    updated_at: datetime
