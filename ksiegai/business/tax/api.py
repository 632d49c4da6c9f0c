from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.business.tax.schemas import (
    DeclarationRequest,
    GeneratedDeclaration,
    IncomeTaxRequest,
    IncomeTaxResult,
    PitAdvanceResult,
    VatSettlementResult,
    ZusContributions,
    ZusRequest,
)
from ksiegai.business.tax.service import tax_service
from ksiegai.core.database import get_db
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/tax", tags=["tax"])


@router.post("/income-tax", response_model=IncomeTaxResult)
def calculate_income_tax(
    payload: IncomeTaxRequest,
    ctx: AuthContext = Depends(get_request_auth_context),
) -> IncomeTaxResult:
    return tax_service.calculate_income_tax(payload)


@router.post("/zus", response_model=ZusContributions)
def calculate_zus(
    payload: ZusRequest,
    ctx: AuthContext = Depends(get_request_auth_context),
) -> ZusContributions:
    return tax_service.zus_contributions(payload.base)


@router.get("/pit-advance", response_model=PitAdvanceResult)
def get_pit_advance(
    business_profile_id: uuid.UUID = Query(),
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> PitAdvanceResult:
    return tax_service.pit_advance(db, ctx, business_profile_id=business_profile_id, year=year, month=month)


@router.get("/vat-settlement", response_model=VatSettlementResult)
def get_vat_settlement(
    business_profile_id: uuid.UUID = Query(),
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> VatSettlementResult:
    return tax_service.vat_settlement(db, ctx, business_profile_id=business_profile_id, year=year, month=month)


@router.post("/declarations", response_model=GeneratedDeclaration)
def generate_declaration(
    payload: DeclarationRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> GeneratedDeclaration:
    return tax_service.generate_declaration(db, ctx, payload)
