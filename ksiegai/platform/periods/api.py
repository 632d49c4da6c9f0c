from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.core.database import get_db
from ksiegai.core.rbac import require_permissions
from ksiegai.platform.periods.schemas import AccountingPeriodRead, AutoLockRequest, AutoLockResult, PeriodCheck, PeriodLockRequest
from ksiegai.platform.periods.service import period_service
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/periods", tags=["periods"])


@router.get("", response_model=list[AccountingPeriodRead])
def list_periods(
    business_profile_id: uuid.UUID = Query(),
    year: int | None = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[AccountingPeriodRead]:
    return period_service.list_periods(db, ctx, business_profile_id=business_profile_id, year=year)


@router.get("/check", response_model=list[PeriodCheck])
def check_periods(
    business_profile_id: uuid.UUID = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[PeriodCheck]:
    return period_service.check_periods(db, ctx, business_profile_id=business_profile_id)


@router.get("/attention", response_model=list[PeriodCheck])
def periods_needing_attention(
    business_profile_id: uuid.UUID = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[PeriodCheck]:
    return period_service.periods_needing_attention(db, ctx, business_profile_id=business_profile_id)


@router.post(
    "/auto-lock",
    response_model=AutoLockResult,
    dependencies=[Depends(require_permissions("periods.lock"))],
)
def auto_lock_periods(
    payload: AutoLockRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> AutoLockResult:
    return period_service.auto_lock_periods(
        db,
        ctx,
        business_profile_id=payload.business_profile_id,
        today=payload.today,
        dry_run=payload.dry_run,
        max_days_overdue=payload.max_days_overdue,
        skip_if_unposted=payload.skip_if_unposted,
    )


@router.get("/{business_profile_id}/{year}/{month}", response_model=AccountingPeriodRead)
def get_period(
    business_profile_id: uuid.UUID,
    year: int,
    month: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> AccountingPeriodRead:
    _validate_month(month)
    return period_service.get_or_create_period(db, ctx, business_profile_id=business_profile_id, year=year, month=month)


@router.post("/{business_profile_id}/{year}/{month}/close", response_model=AccountingPeriodRead)
def close_period(
    business_profile_id: uuid.UUID,
    year: int,
    month: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> AccountingPeriodRead:
    _validate_month(month)
    return period_service.close_period(db, ctx, business_profile_id=business_profile_id, year=year, month=month)


@router.post("/{business_profile_id}/{year}/{month}/reopen", response_model=AccountingPeriodRead)
def reopen_period(
    business_profile_id: uuid.UUID,
    year: int,
    month: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> AccountingPeriodRead:
    _validate_month(month)
    return period_service.reopen_period(db, ctx, business_profile_id=business_profile_id, year=year, month=month)


@router.post(
    "/{business_profile_id}/{year}/{month}/lock",
    response_model=AccountingPeriodRead,
    dependencies=[Depends(require_permissions("periods.lock"))],
)
def lock_period(
    business_profile_id: uuid.UUID,
    year: int,
    month: int,
    payload: PeriodLockRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> AccountingPeriodRead:
    _validate_month(month)
    return period_service.lock_period(
        db,
        ctx,
        business_profile_id=business_profile_id,
        year=year,
        month=month,
        reason=payload.reason,
    )


def _validate_month(month: int) -> None:
    if not 1 <= month <= 12:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="month must be between 1 and 12")
