from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.business.invoicing.schemas import InvoiceRead
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.database import get_db
from ksiegai.core.rbac import require_permissions
from ksiegai.integrations.ksef.schemas import (
    KsefConfirmRequest,
    KsefQrCodeRead,
    KsefReceivedInvoiceRead,
    KsefSubmitRequest,
    KsefSyncRunRead,
    KsefSyncStats,
    KsefTokensStore,
    KsefTokenStatusRead,
    ProfileSyncResult,
    SubjectType,
)
from ksiegai.integrations.ksef.service import ksef_service
from ksiegai.integrations.ksef.sync import get_sync_job
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/ksef", tags=["ksef"])


@router.post("/invoices/{invoice_id}/submit", response_model=InvoiceRead)
def submit_invoice(
    invoice_id: uuid.UUID,
    payload: KsefSubmitRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> InvoiceRead:
    return ksef_service.submit_invoice_to_ksef(db, ctx, invoice_id, token=payload.token)


@router.post("/invoices/{invoice_id}/confirm", response_model=InvoiceRead)
def confirm_invoice(
    invoice_id: uuid.UUID,
    payload: KsefConfirmRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> InvoiceRead:
    return ksef_service.confirm_ksef_number(db, ctx, invoice_id, payload.ksef_number)


@router.get("/invoices/{invoice_id}/qr", response_model=KsefQrCodeRead)
def invoice_qr_code(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> KsefQrCodeRead:
    return ksef_service.invoice_qr_code(db, ctx, invoice_id)


@router.post("/tokens", response_model=KsefTokenStatusRead, status_code=status.HTTP_201_CREATED)
def store_tokens(
    payload: KsefTokensStore,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> KsefTokenStatusRead:
    return ksef_service.store_tokens(db, ctx, payload)


@router.delete("/tokens", response_model=KsefTokenStatusRead)
def clear_tokens(
    business_profile_id: uuid.UUID = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> KsefTokenStatusRead:
    return ksef_service.clear_tokens(db, ctx, business_profile_id)


@router.get("/tokens/status", response_model=KsefTokenStatusRead)
def token_status(
    business_profile_id: uuid.UUID = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> KsefTokenStatusRead:
    return ksef_service.token_status(db, ctx, business_profile_id)


@router.get("/received-invoices", response_model=list[KsefReceivedInvoiceRead])
def list_received_invoices(
    business_profile_id: uuid.UUID = Query(),
    subject_type: SubjectType | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[KsefReceivedInvoiceRead]:
    return ksef_service.list_received_invoices(db, ctx, business_profile_id=business_profile_id, subject_type=subject_type)


@router.post("/sync/{business_profile_id}", response_model=ProfileSyncResult)
def sync_profile_now(
    business_profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> ProfileSyncResult:
    business_profile_service.require_profile(db, ctx, business_profile_id)
    return get_sync_job().sync_profile_now(business_profile_id)


@router.get(
    "/sync/stats",
    response_model=KsefSyncStats,
    dependencies=[Depends(require_permissions("ksef.sync.read"))],
)
def sync_stats() -> KsefSyncStats:
    return get_sync_job().get_stats()


@router.get(
    "/sync/runs",
    response_model=list[KsefSyncRunRead],
    dependencies=[Depends(require_permissions("ksef.sync.read"))],
)
def list_sync_runs(
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
) -> list[KsefSyncRunRead]:
    return ksef_service.list_sync_runs(db, limit=limit)
