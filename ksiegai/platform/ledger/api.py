from __future__ import annotations

from datetime import date
import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.core.database import get_db
from ksiegai.platform.ledger.schemas import (
    AccountLedgerRead,
    EntrySourceType,
    EntryStatus,
    JournalEntryCreate,
    JournalEntryLinesUpdate,
    JournalEntryRead,
    JournalEntryReverseRequest,
    LedgerAccountCreate,
    LedgerAccountRead,
    LedgerAccountType,
    SeedChartAccountsRequest,
)
from ksiegai.platform.ledger.service import ledger_service
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/ledger", tags=["ledger"])


@router.post("/accounts", response_model=LedgerAccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: LedgerAccountCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> LedgerAccountRead:
    return ledger_service.create_account(db, ctx, payload)


@router.get("/accounts", response_model=list[LedgerAccountRead])
def list_accounts(
    business_profile_id: uuid.UUID = Query(),
    account_type: LedgerAccountType | None = Query(default=None),
    active_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[LedgerAccountRead]:
    return ledger_service.list_accounts(
        db,
        ctx,
        business_profile_id=business_profile_id,
        account_type=account_type,
        active_only=active_only,
    )


@router.post("/accounts/{account_id}/deactivate", response_model=LedgerAccountRead)
def deactivate_account(
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> LedgerAccountRead:
    return ledger_service.deactivate_account(db, ctx, account_id)


@router.get("/accounts/{account_id}/ledger", response_model=AccountLedgerRead)
def get_account_ledger(
    account_id: uuid.UUID,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> AccountLedgerRead:
    return ledger_service.account_ledger(db, ctx, account_id, start_date=start_date, end_date=end_date)


@router.post("/seeds/chart-of-accounts", response_model=list[LedgerAccountRead])
def seed_chart_of_accounts(
    payload: SeedChartAccountsRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[LedgerAccountRead]:
    return ledger_service.seed_chart_of_accounts(db, ctx, business_profile_id=payload.business_profile_id)


@router.post("/journal-entries", response_model=JournalEntryRead, status_code=status.HTTP_201_CREATED)
def create_journal_entry(
    payload: JournalEntryCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> JournalEntryRead:
    return ledger_service.create_entry(db, ctx, payload)


@router.put("/journal-entries/{entry_id}", response_model=JournalEntryRead)
def update_journal_entry(
    entry_id: uuid.UUID,
    payload: JournalEntryLinesUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> JournalEntryRead:
    return ledger_service.update_entry_lines(db, ctx, entry_id, payload)


@router.delete("/journal-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_journal_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> Response:
    ledger_service.delete_entry(db, ctx, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/journal-entries/{entry_id}/post", response_model=JournalEntryRead)
def post_journal_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> JournalEntryRead:
    return ledger_service.post_entry(db, ctx, entry_id)


@router.post("/journal-entries/{entry_id}/reverse", response_model=JournalEntryRead)
def reverse_journal_entry(
    entry_id: uuid.UUID,
    payload: JournalEntryReverseRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> JournalEntryRead:
    return ledger_service.reverse_entry(db, ctx, entry_id, payload)


@router.get("/journal-entries/{entry_id}", response_model=JournalEntryRead)
def get_journal_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> JournalEntryRead:
    return ledger_service.get_entry(db, ctx, entry_id)


@router.get("/journal-entries", response_model=list[JournalEntryRead])
def list_journal_entries(
    business_profile_id: uuid.UUID = Query(),
    status_filter: EntryStatus | None = Query(default=None, alias="status"),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    source_type: EntrySourceType | None = Query(default=None),
    source_id: str | None = Query(default=None),
    period_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[JournalEntryRead]:
    return ledger_service.list_entries(
        db,
        ctx,
        business_profile_id=business_profile_id,
        status_filter=status_filter,
        start_date=start_date,
        end_date=end_date,
        source_type=source_type,
        source_id=source_id,
        period_id=period_id,
    )
