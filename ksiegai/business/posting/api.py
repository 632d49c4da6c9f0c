from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.business.posting.schemas import AutoPostPendingRequest, AutoPostPendingResult, PostingResult, PostingStats
from ksiegai.business.posting.service import posting_service
from ksiegai.core.database import get_db
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/posting", tags=["posting"])


@router.post("/invoices/{invoice_id}", response_model=PostingResult)
def auto_post_invoice(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> PostingResult:
    return posting_service.auto_post_invoice(db, ctx, invoice_id)


@router.post("/pending", response_model=AutoPostPendingResult)
def auto_post_pending(
    payload: AutoPostPendingRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> AutoPostPendingResult:
    return posting_service.auto_post_pending(db, ctx, business_profile_id=payload.business_profile_id, limit=payload.limit)


@router.get("/stats", response_model=PostingStats)
def posting_stats(
    business_profile_id: uuid.UUID = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> PostingStats:
    return posting_service.posting_stats(db, ctx, business_profile_id=business_profile_id)
