from __future__ import annotations

from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


TaxType = Literal["SKALA", "LINIOWY", "RYCZALT"]
DeclarationType = Literal["JPK_V7M", "PIT_ADVANCE", "ZUS_DRA"]


class TaxBracket(BaseModel):
    label: str
    base: Decimal
    rate: Decimal
    tax: Decimal


class IncomeTaxRequest(BaseModel):
    income: Decimal = Field(ge=Decimal("0"))
    costs: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    tax_type: TaxType
    ryczalt_rate: Decimal | None = None


class IncomeTaxResult(BaseModel):
    tax_type: str
    income: Decimal
    costs: Decimal
    base: Decimal
    tax: Decimal
    effective_rate: Decimal
    brackets: list[TaxBracket] = Field(default_factory=list)


class PitAdvanceResult(BaseModel):
    business_profile_id: UUID
    year: int
    month: int
    tax_type: str
    cumulative_income: Decimal
    cumulative_costs: Decimal
    cumulative_tax: Decimal
    previous_cumulative_tax: Decimal
    advance_due: Decimal


class VatRateTotals(BaseModel):
    vat_rate: str
    net_amount: Decimal
    vat_amount: Decimal


class VatSettlementResult(BaseModel):
    business_profile_id: UUID
    year: int
    month: int
    output_vat: Decimal
    input_vat: Decimal
    vat_due: Decimal
    carry_forward: Decimal
    output_by_rate: list[VatRateTotals] = Field(default_factory=list)
    input_by_rate: list[VatRateTotals] = Field(default_factory=list)
    sales_count: int = 0
    purchase_count: int = 0


class ZusRequest(BaseModel):
    base: Decimal = Field(ge=Decimal("0"))


class ZusContributions(BaseModel):
    base: Decimal
    social: Decimal
    health: Decimal
    total: Decimal


class DeclarationRequest(BaseModel):
    business_profile_id: UUID
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    declaration_type: str
    zus_base: Decimal | None = Field(default=None, ge=Decimal("0"))


class GeneratedDeclaration(BaseModel):
    xml_content: str
    file_name: str
    declaration_type: DeclarationType | str
