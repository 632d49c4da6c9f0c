from __future__ import annotations

from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ksiegai import audit, events
from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.invoicing.schemas import InvoiceCreate
from ksiegai.business.invoicing.service import invoicing_service
from ksiegai.business.posting.facts import build_posting_facts, validate_posting_facts
from ksiegai.business.posting.service import posting_legs, posting_service
from ksiegai.business.profiles.schemas import BusinessProfileCreate, BusinessProfileRead
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.config import get_settings
from ksiegai.core.database import Base
import ksiegai.models  # noqa: F401
from ksiegai.platform.ledger.models import AccountingPeriod, JournalEntry
from ksiegai.platform.ledger.service import ledger_service
from ksiegai.platform.security.context import AuthContext


ISSUE_DATE = date(2026, 5, 14)


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
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def ctx() -> AuthContext:
    return AuthContext(user_id="owner-1")


def _profile(session: Session, ctx: AuthContext, *, vat_status: str = "ACTIVE", nip: str = "5260250274") -> BusinessProfileRead:
    return business_profile_service.create_profile(
        session,
        ctx,
        BusinessProfileCreate(name=f"Firma {nip}", nip=nip, vat_status=vat_status),
    )


def _issued_invoice(
    session: Session,
    ctx: AuthContext,
    profile: BusinessProfileRead,
    *,
    transaction_type: str = "INCOME",
    vat_rate: str = "23",
    number: str | None = None,
) -> Invoice:
    created = invoicing_service.create_invoice(
        session,
        ctx,
        InvoiceCreate.model_validate(
            {
                "business_profile_id": profile.id,
                "transaction_type": transaction_type,
                "number": number,
                "counterparty_name": "Kontrahent",
                "issue_date": ISSUE_DATE,
                "lines": [{"name": "Pozycja", "quantity": "1", "unit_price_net": "1000", "vat_rate": vat_rate}],
            }
        ),
    )
    invoicing_service.issue_invoice(session, ctx, created.id)
    invoice = session.get(Invoice, created.id)
    assert invoice is not None
    return invoice


def _leg_map(entry: JournalEntry, session: Session) -> dict[str, tuple[Decimal, Decimal]]:
    result: dict[str, tuple[Decimal, Decimal]] = {}
    for line in entry.lines:
        code = line.account.code
        result[code] = (Decimal(line.debit_amount), Decimal(line.credit_amount))
    return result


def test_posting_legs_for_income_expense_and_exempt(db_session: Session, ctx: AuthContext) -> None:
    active = _profile(db_session, ctx)
    income = _issued_invoice(db_session, ctx, active)
    legs = posting_legs(build_posting_facts(income, vat_status="ACTIVE"))
    assert legs == [
        ("201", Decimal("1230.00"), Decimal("0")),
        ("700", Decimal("0"), Decimal("1000.00")),
        ("221", Decimal("0"), Decimal("230.00")),
    ]

    expense = _issued_invoice(db_session, ctx, active, transaction_type="EXPENSE", number="FZ/1")
    legs = posting_legs(build_posting_facts(expense, vat_status="ACTIVE"))
    assert legs == [
        ("400", Decimal("1000.00"), Decimal("0")),
        ("222", Decimal("230.00"), Decimal("0")),
        ("202", Decimal("0"), Decimal("1230.00")),
    ]

    exempt_legs = posting_legs(build_posting_facts(income, vat_status="EXEMPT"))
    assert exempt_legs == [
        ("201", Decimal("1230.00"), Decimal("0")),
        ("700", Decimal("0"), Decimal("1230.00")),
    ]


def test_validate_posting_facts_flags_problems(db_session: Session, ctx: AuthContext) -> None:
    profile = _profile(db_session, ctx)
    expense = _issued_invoice(db_session, ctx, profile, transaction_type="EXPENSE", number="FZ/2")
    expense.counterparty_name = None
    facts = build_posting_facts(expense, vat_status="ACTIVE")
    validation = validate_posting_facts(facts)
    assert validation.ok
    assert "expense invoice without a counterparty" in validation.warnings

    facts.gross_grosze = 0
    assert "gross amount must be positive for a VAT invoice" in validate_posting_facts(facts).errors


def test_auto_post_invoice_books_balanced_entry(db_session: Session, ctx: AuthContext) -> None:
    profile = _profile(db_session, ctx)
    ledger_service.seed_chart_of_accounts(db_session, ctx, business_profile_id=profile.id)
    invoice = _issued_invoice(db_session, ctx, profile)

    result = posting_service.auto_post_invoice(db_session, ctx, invoice.id)
    assert result.outcome == "POSTED"
    assert result.journal_entry_id is not None

    entry = db_session.get(JournalEntry, result.journal_entry_id)
    assert entry is not None
    assert entry.status == "POSTED"
    assert entry.source_type == "INVOICE"
    assert entry.source_id == str(invoice.id)
    assert _leg_map(entry, db_session) == {
        "201": (Decimal("1230.00"), Decimal("0.00")),
        "700": (Decimal("0.00"), Decimal("1000.00")),
        "221": (Decimal("0.00"), Decimal("230.00")),
    }

    db_session.refresh(invoice)
    assert invoice.posting_status == "POSTED"
    assert invoice.journal_entry_id == entry.id

    with pytest.raises(HTTPException) as exc_info:
        posting_service.auto_post_invoice(db_session, ctx, invoice.id)
    assert exc_info.value.status_code == 409

    rerun = posting_service.auto_post_pending(db_session, ctx, business_profile_id=profile.id)
    assert rerun.processed == 0
    assert db_session.scalars(select(JournalEntry).where(JournalEntry.source_id == str(invoice.id))).all() == [entry]


def test_missing_account_marks_needs_review(db_session: Session, ctx: AuthContext) -> None:
    profile = _profile(db_session, ctx)
    invoice = _issued_invoice(db_session, ctx, profile)

    result = posting_service.auto_post_invoice(db_session, ctx, invoice.id)
    assert result.outcome == "NEEDS_REVIEW"
    assert result.message == "ledger account 201 not found"

    stats = posting_service.posting_stats(db_session, ctx, business_profile_id=profile.id)
    assert stats.needs_review == 1
    assert stats.posted == 0


def test_closed_period_marks_error(db_session: Session, ctx: AuthContext) -> None:
    profile = _profile(db_session, ctx)
    ledger_service.seed_chart_of_accounts(db_session, ctx, business_profile_id=profile.id)
    invoice = _issued_invoice(db_session, ctx, profile)
    db_session.add(AccountingPeriod(business_profile_id=profile.id, year=2026, month=5, status="CLOSED"))
    db_session.commit()

    result = posting_service.auto_post_invoice(db_session, ctx, invoice.id)
    assert result.outcome == "ERROR"
    assert result.message == "accounting period 2026-05 is CLOSED"


def test_auto_post_pending_counts_outcomes(db_session: Session, ctx: AuthContext) -> None:
    profile = _profile(db_session, ctx)
    ledger_service.seed_chart_of_accounts(db_session, ctx, business_profile_id=profile.id)
    _issued_invoice(db_session, ctx, profile)
    _issued_invoice(db_session, ctx, profile, transaction_type="EXPENSE", number="FZ/9")
    invoicing_service.create_invoice(
        db_session,
        ctx,
        InvoiceCreate.model_validate(
            {
                "business_profile_id": profile.id,
                "issue_date": ISSUE_DATE,
                "lines": [{"name": "Szkic", "quantity": "1", "unit_price_net": "10", "vat_rate": "23"}],
            }
        ),
    )

    result = posting_service.auto_post_pending(db_session, ctx, business_profile_id=profile.id)
    assert result.processed == 2
    assert result.posted == 2
    assert result.errors == 0

    stats = posting_service.posting_stats(db_session, ctx, business_profile_id=profile.id)
    assert stats.posted == 2
    assert stats.unposted == 0
