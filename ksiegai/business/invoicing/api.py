from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.business.invoicing.schemas import (
    CorrectionCreate,
    InvoiceCreate,
    InvoiceRead,
    InvoiceStatus,
    InvoiceUpdate,
    InvoiceVoidRequest,
    MarkInvoicePaidRequest,
    PostingStatus,
    RefreshOverdueResponse,
    TransactionType,
    VatSummaryRead,
)
from ksiegai.business.invoicing.service import invoicing_service
from ksiegai.core.database import get_db
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/invoices", tags=["invoices"])


@router.post("", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> InvoiceRead:
    return invoicing_service.create_invoice(db, ctx, payload)


@router.get("", response_model=list[InvoiceRead])
def list_invoices(
    business_profile_id: uuid.UUID = Query(),
    transaction_type: TransactionType | None = Query(default=None),
    status_filter: InvoiceStatus | None = Query(default=None, alias="status"),
    posting_status: PostingStatus | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[InvoiceRead]:
    return invoicing_service.list_invoices(
        db,
        ctx,
        business_profile_id=business_profile_id,
        transaction_type=transaction_type,
        status_filter=status_filter,
        posting_status=posting_status,
        start_date=start_date,
        end_date=end_date,
    )


@router.post("/refresh-overdue", response_model=RefreshOverdueResponse)
def refresh_overdue(
    business_profile_id: uuid.UUID = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> RefreshOverdueResponse:
    return invoicing_service.refresh_overdue(db, ctx, business_profile_id=business_profile_id)


@router.get("/{invoice_id}", response_model=InvoiceRead)
def get_invoice(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> InvoiceRead:
    return invoicing_service.get_invoice(db, ctx, invoice_id)


@router.put("/{invoice_id}", response_model=InvoiceRead)
def update_invoice(
    invoice_id: uuid.UUID,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> InvoiceRead:
    return invoicing_service.update_invoice(db, ctx, invoice_id, payload)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> Response:
    invoicing_service.delete_invoice(db, ctx, invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{invoice_id}/issue", response_model=InvoiceRead)
def issue_invoice(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> InvoiceRead:
    return invoicing_service.issue_invoice(db, ctx, invoice_id)


@router.post("/{invoice_id}/void", response_model=InvoiceRead)
def void_invoice(
    invoice_id: uuid.UUID,
    payload: InvoiceVoidRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> InvoiceRead:
    return invoicing_service.void_invoice(db, ctx, invoice_id, payload)


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceRead)
def mark_invoice_paid(
    invoice_id: uuid.UUID,
    payload: MarkInvoicePaidRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> InvoiceRead:
    return invoicing_service.mark_invoice_paid(db, ctx, invoice_id, payload)


@router.post("/{invoice_id}/corrections", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_correction(
    invoice_id: uuid.UUID,
    payload: CorrectionCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> InvoiceRead:
    return invoicing_service.create_correction(db, ctx, invoice_id, payload)


@router.get("/{invoice_id}/vat-summary", response_model=VatSummaryRead)
def get_vat_summary(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> VatSummaryRead:
    return invoicing_service.vat_summary(db, ctx, invoice_id)
