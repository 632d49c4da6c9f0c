from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.business.reporting.finance.schemas import (
    BalanceSheetReportRead,
    ProfitAndLossReportRead,
    ReceivablesAgingReportRead,
    TrialBalanceReportRead,
)
from ksiegai.business.reporting.finance.service import finance_reporting_service
from ksiegai.core.database import get_db
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/trial-balance", response_model=TrialBalanceReportRead)
def trial_balance(
    business_profile_id: uuid.UUID = Query(),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> TrialBalanceReportRead:
    return finance_reporting_service.trial_balance(
        db,
        ctx,
        business_profile_id=business_profile_id,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/profit-and-loss", response_model=ProfitAndLossReportRead)
def profit_and_loss(
    business_profile_id: uuid.UUID = Query(),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> ProfitAndLossReportRead:
    return finance_reporting_service.profit_and_loss(
        db,
        ctx,
        business_profile_id=business_profile_id,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/balance-sheet", response_model=BalanceSheetReportRead)
def balance_sheet(
    business_profile_id: uuid.UUID = Query(),
    as_of_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> BalanceSheetReportRead:
    return finance_reporting_service.balance_sheet(db, ctx, business_profile_id=business_profile_id, as_of_date=as_of_date)


@router.get("/receivables-aging", response_model=ReceivablesAgingReportRead)
def receivables_aging(
    business_profile_id: uuid.UUID = Query(),
    as_of_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> ReceivablesAgingReportRead:
    return finance_reporting_service.receivables_aging(
        db,
        ctx,
        business_profile_id=business_profile_id,
        as_of_date=as_of_date,
    )
