from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ksiegai import audit, events
from ksiegai.business.cash.schemas import (
    CashAccountCreate,
    CashAccountRead,
    CashDocumentCancelRequest,
    CashDocumentCreate,
    CashReconciliationCreate,
)
from ksiegai.business.cash.service import cash_service, reconciliation_result
from ksiegai.business.profiles.schemas import BusinessProfileCreate
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.database import Base
import ksiegai.models  # noqa: F401
from ksiegai.platform.security.context import AuthContext


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def ctx() -> AuthContext:
    return AuthContext(user_id="kasjer", correlation_id="corr-cash")


@pytest.fixture()
def account(db_session: Session, ctx: AuthContext) -> CashAccountRead:
    profile = business_profile_service.create_profile(
        db_session,
        ctx,
        BusinessProfileCreate(name="Sklep", nip="5260250274"),
    )
    return cash_service.create_account(
        db_session,
        ctx,
        CashAccountCreate(business_profile_id=profile.id, name="Kasa główna", opening_balance=Decimal("500")),
    )


def _document(account: CashAccountRead, doc_type: str, amount: str, **overrides: object) -> CashDocumentCreate:
    payload: dict[str, object] = {
        "cash_account_id": account.id,
        "type": doc_type,
        "amount": amount,
        "document_date": date(2026, 4, 2),
        "description": "Sprzedaż detaliczna" if doc_type == "KP" else "Zakup materiałów",
    }
    payload.update(overrides)
    return CashDocumentCreate.model_validate(payload)


def test_reconciliation_result_tolerance() -> None:
    assert reconciliation_result(Decimal("0.01")) == "match"
    assert reconciliation_result(Decimal("-0.01")) == "match"
    assert reconciliation_result(Decimal("0.02")) == "surplus"
    assert reconciliation_result(Decimal("-5.00")) == "shortage"


def test_documents_are_numbered_and_move_the_balance(db_session: Session, ctx: AuthContext, account: CashAccountRead) -> None:
    assert Decimal(account.balance) == Decimal("500.00")

    receipt = cash_service.create_document(db_session, ctx, _document(account, "KP", "200"))
    second_receipt = cash_service.create_document(db_session, ctx, _document(account, "KP", "50.5"))
    payout = cash_service.create_document(
        db_session,
        ctx,
        _document(account, "KW", "100", counterparty_name="Hurtownia", counterparty_nip="111-111-11-11"),
    )

    assert receipt.document_number == "KP/2026/0001"
    assert second_receipt.document_number == "KP/2026/0002"
    assert payout.document_number == "KW/2026/0001"
    assert payout.counterparty_nip == "1111111111"
    assert any(item["event_type"] == "cash.document.created" for item in events.published_events)

    accounts = cash_service.list_accounts(db_session, ctx, business_profile_id=account.business_profile_id)
    assert Decimal(accounts[0].balance) == Decimal("650.50")


def test_payout_cannot_exceed_balance(db_session: Session, ctx: AuthContext, account: CashAccountRead) -> None:
    with pytest.raises(HTTPException) as exc_info:
        cash_service.create_document(db_session, ctx, _document(account, "KW", "500.01"))
    assert exc_info.value.status_code == 422
    assert exc_info.value.detail == "insufficient cash: balance 500.00, requested 500.01"

    with pytest.raises(HTTPException) as exc_info:
        cash_service.create_document(db_session, ctx, _document(account, "KP", "10", counterparty_nip="1111111112"))
    assert exc_info.value.status_code == 422

    with pytest.raises(HTTPException) as exc_info:
        cash_service.create_document(db_session, ctx, _document(account, "KP", "10", linked_invoice_id=uuid.uuid4()))
    assert exc_info.value.status_code == 422


def test_approve_and_cancel_keep_history(db_session: Session, ctx: AuthContext, account: CashAccountRead) -> None:
    receipt = cash_service.create_document(db_session, ctx, _document(account, "KP", "200"))

    approved = cash_service.approve_document(db_session, ctx, receipt.id)
    assert approved.is_approved is True
    assert approved.approved_by == "kasjer"
    assert cash_service.approve_document(db_session, ctx, receipt.id).is_approved is True

    payout = cash_service.create_document(db_session, ctx, _document(account, "KW", "50"))
    cancelled = cash_service.cancel_document(db_session, ctx, payout.id, CashDocumentCancelRequest(reason="pomyłka"))
    assert cancelled.is_cancelled is True
    assert cancelled.cancellation_reason == "pomyłka"

    with pytest.raises(HTTPException) as exc_info:
        cash_service.cancel_document(db_session, ctx, payout.id, CashDocumentCancelRequest(reason="again"))
    assert exc_info.value.status_code == 409

    with pytest.raises(HTTPException) as exc_info:
        cash_service.approve_document(db_session, ctx, payout.id)
    assert exc_info.value.status_code == 409

    visible = cash_service.list_documents(db_session, ctx, cash_account_id=account.id)
    assert [item.document_number for item in visible] == ["KP/2026/0001"]
    everything = cash_service.list_documents(db_session, ctx, cash_account_id=account.id, include_cancelled=True)
    assert len(everything) == 2
    payouts = cash_service.list_documents(db_session, ctx, cash_account_id=account.id, document_type="KW", include_cancelled=True)
    assert [item.type for item in payouts] == ["KW"]

    actions = [entry["action"] for entry in audit.entries_for("cash.document")]
    assert actions == ["create", "approve", "create", "cancel"]


def test_reconcile_adjusts_balance_to_counted_amount(db_session: Session, ctx: AuthContext, account: CashAccountRead) -> None:
    cash_service.create_document(db_session, ctx, _document(account, "KP", "100"))

    shortage = cash_service.reconcile(
        db_session,
        ctx,
        account.id,
        CashReconciliationCreate(reconciliation_date=date(2026, 4, 30), counted_balance=Decimal("590"), explanation="brak 10 zł"),
    )
    assert Decimal(shortage.system_balance) == Decimal("600.00")
    assert Decimal(shortage.difference) == Decimal("-10.00")
    assert shortage.result == "shortage"

    match = cash_service.reconcile(
        db_session,
        ctx,
        account.id,
        CashReconciliationCreate(reconciliation_date=date(2026, 5, 1), counted_balance=Decimal("590")),
    )
    assert match.result == "match"
    assert Decimal(match.system_balance) == Decimal("590.00")

    history = cash_service.list_reconciliations(db_session, ctx, account.id)
    assert [item.result for item in history] == ["match", "shortage"]


def test_register_summary_and_csv_export(db_session: Session, ctx: AuthContext, account: CashAccountRead) -> None:
    cash_service.create_document(db_session, ctx, _document(account, "KP", "300"))
    cash_service.create_document(db_session, ctx, _document(account, "KW", "120", document_date=date(2026, 4, 20)))
    cash_service.create_document(db_session, ctx, _document(account, "KP", "40", document_date=date(2026, 5, 3)))

    april = cash_service.register_summary(
        db_session,
        ctx,
        account.id,
        start_date=date(2026, 4, 1),
        end_date=date(2026, 4, 30),
    )
    assert april.total_kp == Decimal("300.00")
    assert april.total_kw == Decimal("120.00")
    assert april.net_change == Decimal("180.00")
    assert april.current_balance == Decimal("720.00")
    assert april.document_count == 2

    content = cash_service.export_csv(db_session, ctx, account.id)
    lines = content.strip().split("\n")
    assert lines[0].startswith('"Nr dokumentu";"Data";"Typ";"Kwota"')
    assert lines[1].startswith('"KP/2026/0001";"2026-04-02";"KP";"300.00"')
    assert len(lines) == 4


def test_closed_account_rejects_documents(db_session: Session, ctx: AuthContext, account: CashAccountRead) -> None:
    closed = cash_service.close_account(db_session, ctx, account.id)
    assert closed.is_active is False

    with pytest.raises(HTTPException) as exc_info:
        cash_service.create_document(db_session, ctx, _document(account, "KP", "10"))
    assert exc_info.value.status_code == 409

    assert cash_service.list_accounts(db_session, ctx, business_profile_id=account.business_profile_id) == []
    assert len(cash_service.list_accounts(db_session, ctx, business_profile_id=account.business_profile_id, include_closed=True)) == 1
