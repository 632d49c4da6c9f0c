from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.business.cash.schemas import (
    CashAccountCreate,
    CashAccountRead,
    CashDocumentCancelRequest,
    CashDocumentCreate,
    CashDocumentRead,
    CashDocumentType,
    CashReconciliationCreate,
    CashReconciliationRead,
    CashRegisterSummary,
)
from ksiegai.business.cash.service import cash_service
from ksiegai.core.database import get_db
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/cash", tags=["cash"])


@router.post("/accounts", response_model=CashAccountRead, status_code=status.HTTP_201_CREATED)
def create_cash_account(
    payload: CashAccountCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CashAccountRead:
    return cash_service.create_account(db, ctx, payload)


@router.get("/accounts", response_model=list[CashAccountRead])
def list_cash_accounts(
    business_profile_id: uuid.UUID = Query(),
    include_closed: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[CashAccountRead]:
    return cash_service.list_accounts(db, ctx, business_profile_id=business_profile_id, include_closed=include_closed)


@router.post("/accounts/{account_id}/close", response_model=CashAccountRead)
def close_cash_account(
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CashAccountRead:
    return cash_service.close_account(db, ctx, account_id)


@router.get("/accounts/{account_id}/documents", response_model=list[CashDocumentRead])
def list_cash_documents(
    account_id: uuid.UUID,
    document_type: CashDocumentType | None = Query(default=None, alias="type"),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[CashDocumentRead]:
    return cash_service.list_documents(
        db,
        ctx,
        cash_account_id=account_id,
        document_type=document_type,
        start_date=start_date,
        end_date=end_date,
        include_cancelled=include_cancelled,
    )


@router.post("/accounts/{account_id}/reconciliations", response_model=CashReconciliationRead, status_code=status.HTTP_201_CREATED)
def reconcile_cash_account(
    account_id: uuid.UUID,
    payload: CashReconciliationCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CashReconciliationRead:
    return cash_service.reconcile(db, ctx, account_id, payload)


@router.get("/accounts/{account_id}/reconciliations", response_model=list[CashReconciliationRead])
def list_reconciliations(
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[CashReconciliationRead]:
    return cash_service.list_reconciliations(db, ctx, account_id)


@router.get("/accounts/{account_id}/summary", response_model=CashRegisterSummary)
def cash_register_summary(
    account_id: uuid.UUID,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CashRegisterSummary:
    return cash_service.register_summary(db, ctx, account_id, start_date=start_date, end_date=end_date)


@router.get("/accounts/{account_id}/export")
def export_cash_register(
    account_id: uuid.UUID,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> Response:
    content = cash_service.export_csv(db, ctx, account_id, start_date=start_date, end_date=end_date)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"content-disposition": f'attachment; filename="kasa_{account_id}.csv"'},
    )


@router.post("/documents", response_model=CashDocumentRead, status_code=status.HTTP_201_CREATED)
def create_cash_document(
    payload: CashDocumentCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CashDocumentRead:
    return cash_service.create_document(db, ctx, payload)


@router.post("/documents/{document_id}/approve", response_model=CashDocumentRead)
def approve_cash_document(
    document_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CashDocumentRead:
    return cash_service.approve_document(db, ctx, document_id)


@router.post("/documents/{document_id}/cancel", response_model=CashDocumentRead)
def cancel_cash_document(
    document_id: uuid.UUID,
    payload: CashDocumentCancelRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CashDocumentRead:
    return cash_service.cancel_document(db, ctx, document_id, payload)
