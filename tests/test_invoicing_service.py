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
from ksiegai.business.customers.schemas import CustomerCreate
from ksiegai.business.customers.service import customer_service
from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.invoicing.schemas import (
    CorrectionCreate,
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceVoidRequest,
    MarkInvoicePaidRequest,
)
from ksiegai.business.invoicing.service import compute_line_amounts, invoicing_service
from ksiegai.business.products.schemas import ProductCreate
from ksiegai.business.products.service import product_service
from ksiegai.business.profiles.schemas import BusinessProfileCreate, BusinessProfileRead
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.config import get_settings
from ksiegai.core.database import Base
import ksiegai.models  # noqa: F401
from ksiegai.platform.ledger.models import JournalEntry
from ksiegai.platform.ledger.service import ledger_service
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
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def ctx() -> AuthContext:
    return AuthContext(user_id="owner-1", correlation_id="corr-inv")


@pytest.fixture()
def profile(db_session: Session, ctx: AuthContext) -> BusinessProfileRead:
    return business_profile_service.create_profile(
        db_session,
        ctx,
        BusinessProfileCreate(name="Biuro Projektowe", nip="5260250274", city="Gdańsk"),
    )


def _income(profile: BusinessProfileRead, **overrides: object) -> InvoiceCreate:
    payload: dict[str, object] = {
        "business_profile_id": profile.id,
        "counterparty_name": "Alfa Sp. z o.o.",
        "counterparty_nip": "1111111111",
        "issue_date": date(2026, 3, 10),
        "lines": [
            {"name": "Projekt graficzny", "quantity": "2", "unit_price_net": "500.00", "vat_rate": "23"},
            {"name": "Książka", "quantity": "1", "unit_price_net": "100.00", "vat_rate": "5"},
        ],
    }
    payload.update(overrides)
    return InvoiceCreate.model_validate(payload)


def test_compute_line_amounts_rounds_to_grosze() -> None:
    assert compute_line_amounts(Decimal("3"), Decimal("33.33"), "23") == (Decimal("99.99"), Decimal("23.00"), Decimal("122.99"))
    assert compute_line_amounts(Decimal("1"), Decimal("100"), "zw") == (Decimal("100.00"), Decimal("0.00"), Decimal("100.00"))


def test_create_income_invoice_numbers_and_totals(db_session: Session, ctx: AuthContext, profile: BusinessProfileRead) -> None:
    first = invoicing_service.create_invoice(db_session, ctx, _income(profile))
    second = invoicing_service.create_invoice(db_session, ctx, _income(profile))

    assert first.number == "FV/2026/03/001"
    assert second.number == "FV/2026/03/002"
    assert first.status == "DRAFT"
    assert Decimal(first.total_net) == Decimal("1100.00")
    assert Decimal(first.total_vat) == Decimal("235.00")
    assert Decimal(first.total_gross) == Decimal("1335.00")
    assert Decimal(first.amount_due) == Decimal("1335.00")
    assert [line.position for line in first.lines] == [1, 2]

    summary = invoicing_service.vat_summary(db_session, ctx, first.id)
    assert [row.vat_rate for row in summary.rows] == ["23", "5"]
    assert summary.total_gross == Decimal("1335.00")


def test_expense_invoice_requires_supplier_number(db_session: Session, ctx: AuthContext, profile: BusinessProfileRead) -> None:
    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.create_invoice(db_session, ctx, _income(profile, transaction_type="EXPENSE"))
    assert exc_info.value.status_code == 422

    expense = invoicing_service.create_invoice(
        db_session,
        ctx,
        _income(profile, transaction_type="EXPENSE", number="FA/123/2026"),
    )
    assert expense.number == "FA/123/2026"


def test_invoice_lines_resolve_products_and_customers(db_session: Session, ctx: AuthContext, profile: BusinessProfileRead) -> None:
    product = product_service.create_product(
        db_session,
        ctx,
        ProductCreate(business_profile_id=profile.id, name="Abonament", unit="mies", unit_price_net=Decimal("199.00"), vat_rate="8"),
    )
    customer = customer_service.create_customer(
        db_session,
        ctx,
        CustomerCreate(business_profile_id=profile.id, name="Beta Hurt", nip="2222222222"),
    )

    invoice = invoicing_service.create_invoice(
        db_session,
        ctx,
        _income(
            profile,
            customer_id=customer.id,
            counterparty_name=None,
            counterparty_nip=None,
            lines=[{"product_id": str(product.id), "quantity": "3"}],
        ),
    )

    assert invoice.counterparty_name == "Beta Hurt"
    assert invoice.counterparty_nip == "2222222222"
    assert invoice.lines[0].name == "Abonament"
    assert invoice.lines[0].unit == "mies"
    assert Decimal(invoice.total_gross) == Decimal("644.76")

    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.create_invoice(db_session, ctx, _income(profile, lines=[{"name": "Brak ceny", "quantity": "1"}]))
    assert exc_info.value.status_code == 422

    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.create_invoice(db_session, ctx, _income(profile, counterparty_nip="1111111112"))
    assert exc_info.value.status_code == 422


def test_exempt_profile_cannot_issue_taxed_income(db_session: Session, ctx: AuthContext) -> None:
    exempt = business_profile_service.create_profile(
        db_session,
        ctx,
        BusinessProfileCreate(name="Zwolniony", nip="1234563218", vat_status="EXEMPT"),
    )

    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.create_invoice(db_session, ctx, _income(exempt))
    assert exc_info.value.status_code == 422

    ok = invoicing_service.create_invoice(
        db_session,
        ctx,
        _income(exempt, lines=[{"name": "Usługa", "quantity": "1", "unit_price_net": "300", "vat_rate": "zw"}]),
    )
    assert Decimal(ok.total_vat) == Decimal("0.00")


def test_draft_lifecycle_edit_issue_and_delete_rules(db_session: Session, ctx: AuthContext, profile: BusinessProfileRead) -> None:
    draft = invoicing_service.create_invoice(db_session, ctx, _income(profile))

    updated = invoicing_service.update_invoice(
        db_session,
        ctx,
        draft.id,
        InvoiceUpdate.model_validate({"lines": [{"name": "Tylko jedna", "quantity": "1", "unit_price_net": "100", "vat_rate": "23"}]}),
    )
    assert Decimal(updated.total_gross) == Decimal("123.00")
    assert len(updated.lines) == 1

    issued = invoicing_service.issue_invoice(db_session, ctx, draft.id)
    assert issued.status == "ISSUED"
    assert issued.due_date == date(2026, 3, 24)
    assert any(item["event_type"] == "invoice.issued" for item in events.published_events)
    assert audit.entries_for("invoicing.invoice", str(draft.id), action="issue")

    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.update_invoice(db_session, ctx, draft.id, InvoiceUpdate(notes="za późno"))
    assert exc_info.value.status_code == 409

    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.issue_invoice(db_session, ctx, draft.id)
    assert exc_info.value.status_code == 409

    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.delete_invoice(db_session, ctx, draft.id)
    assert exc_info.value.status_code == 409

    other = invoicing_service.create_invoice(db_session, ctx, _income(profile))
    invoicing_service.delete_invoice(db_session, ctx, other.id)
    assert db_session.get(Invoice, other.id) is None


def test_mark_paid_and_refresh_overdue(db_session: Session, ctx: AuthContext, profile: BusinessProfileRead) -> None:
    first = invoicing_service.create_invoice(db_session, ctx, _income(profile, due_date=date(2026, 3, 20)))
    second = invoicing_service.create_invoice(db_session, ctx, _income(profile, due_date=date(2026, 3, 20)))
    invoicing_service.issue_invoice(db_session, ctx, first.id)
    invoicing_service.issue_invoice(db_session, ctx, second.id)

    partial = invoicing_service.mark_invoice_paid(db_session, ctx, first.id, MarkInvoicePaidRequest(amount=Decimal("335.00")))
    assert partial.status == "ISSUED"
    assert Decimal(partial.amount_due) == Decimal("1000.00")

    paid = invoicing_service.mark_invoice_paid(db_session, ctx, first.id, MarkInvoicePaidRequest(amount=Decimal("1000.00")))
    assert paid.status == "PAID"
    assert Decimal(paid.amount_due) == Decimal("0.00")

    refreshed = invoicing_service.refresh_overdue(db_session, ctx, business_profile_id=profile.id, today=date(2026, 4, 1))
    assert refreshed.checked == 1
    assert refreshed.marked_overdue == [second.id]
    assert invoicing_service.get_invoice(db_session, ctx, second.id).status == "OVERDUE"


def test_void_reverses_posted_entry(
    db_session: Session,
    ctx: AuthContext,
    profile: BusinessProfileRead,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("INVOICE_AUTO_POST", "true")
    get_settings.cache_clear()
    ledger_service.seed_chart_of_accounts(db_session, ctx, business_profile_id=profile.id)

    today = date.today()
    draft = invoicing_service.create_invoice(db_session, ctx, _income(profile, issue_date=today))
    issued = invoicing_service.issue_invoice(db_session, ctx, draft.id)
    assert issued.posting_status == "POSTED"
    assert issued.journal_entry_id is not None

    voided = invoicing_service.void_invoice(db_session, ctx, draft.id, InvoiceVoidRequest(reason="błąd w kwocie"))
    assert voided.status == "VOID"
    assert Decimal(voided.amount_due) == Decimal("0.00")

    original_entry = db_session.get(JournalEntry, issued.journal_entry_id)
    assert original_entry is not None
    assert original_entry.status == "REVERSED"
    reversal = db_session.scalar(select(JournalEntry).where(JournalEntry.reversal_of_id == original_entry.id))
    assert reversal is not None
    assert reversal.status == "POSTED"

    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.void_invoice(db_session, ctx, draft.id, InvoiceVoidRequest(reason="ponownie"))
    assert exc_info.value.status_code == 409


def test_void_rejected_for_ksef_accepted_invoice(db_session: Session, ctx: AuthContext, profile: BusinessProfileRead) -> None:
    draft = invoicing_service.create_invoice(db_session, ctx, _income(profile))
    invoicing_service.issue_invoice(db_session, ctx, draft.id)
    invoice = db_session.get(Invoice, draft.id)
    invoice.ksef_status = "ACCEPTED"
    db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.void_invoice(db_session, ctx, draft.id, InvoiceVoidRequest(reason="anulowanie"))
    assert exc_info.value.status_code == 409


def test_correction_adjusts_original_amount_due(db_session: Session, ctx: AuthContext, profile: BusinessProfileRead) -> None:
    draft = invoicing_service.create_invoice(
        db_session,
        ctx,
        _income(profile, lines=[{"name": "Usługa", "quantity": "1", "unit_price_net": "1000", "vat_rate": "23"}]),
    )
    invoicing_service.issue_invoice(db_session, ctx, draft.id)

    correction = invoicing_service.create_correction(
        db_session,
        ctx,
        draft.id,
        CorrectionCreate.model_validate(
            {
                "reason": "rabat",
                "issue_date": "2026-03-15",
                "lines": [{"name": "Rabat", "quantity": "-1", "unit_price_net": "200", "vat_rate": "23"}],
            }
        ),
    )
    assert correction.number == "KOR/2026/03/001"
    assert correction.document_type == "CORRECTION"
    assert correction.corrected_invoice_id == draft.id
    assert Decimal(correction.total_gross) == Decimal("-246.00")

    original = invoicing_service.get_invoice(db_session, ctx, draft.id)
    assert Decimal(original.amount_due) == Decimal("984.00")
    assert any(item["event_type"] == "invoice.corrected" for item in events.published_events)

    with pytest.raises(HTTPException) as exc_info:
        invoicing_service.create_correction(
            db_session,
            ctx,
            correction.id,
            CorrectionCreate.model_validate({"reason": "x", "lines": [{"name": "y", "quantity": "1", "unit_price_net": "1"}]}),
        )
    assert exc_info.value.status_code == 409


def test_repeated_corrections_share_one_kor_series(db_session: Session, ctx: AuthContext, profile: BusinessProfileRead) -> None:
    expense = invoicing_service.create_invoice(
        db_session,
        ctx,
        _income(
            profile,
            transaction_type="EXPENSE",
            number="ZAK/17/2026",
            lines=[{"name": "Materiały", "quantity": "1", "unit_price_net": "400", "vat_rate": "23"}],
        ),
    )
    invoicing_service.issue_invoice(db_session, ctx, expense.id)
    income = invoicing_service.create_invoice(db_session, ctx, _income(profile))
    invoicing_service.issue_invoice(db_session, ctx, income.id)

    def correct(invoice_id: object) -> str:
        return invoicing_service.create_correction(
            db_session,
            ctx,
            invoice_id,
            CorrectionCreate.model_validate(
                {
                    "reason": "zwrot",
                    "issue_date": "2026-03-20",
                    "lines": [{"name": "Zwrot", "quantity": "-1", "unit_price_net": "50", "vat_rate": "23"}],
                }
            ),
        ).number

    assert correct(expense.id) == "KOR/2026/03/001"
    assert correct(expense.id) == "KOR/2026/03/002"
    assert correct(income.id) == "KOR/2026/03/003"


def test_list_invoices_filters(db_session: Session, ctx: AuthContext, profile: BusinessProfileRead) -> None:
    income = invoicing_service.create_invoice(db_session, ctx, _income(profile))
    invoicing_service.create_invoice(
        db_session,
        ctx,
        _income(profile, transaction_type="EXPENSE", number="ZAK/1", issue_date=date(2026, 4, 2)),
    )
    invoicing_service.issue_invoice(db_session, ctx, income.id)

    expenses = invoicing_service.list_invoices(db_session, ctx, business_profile_id=profile.id, transaction_type="EXPENSE")
    assert [row.number for row in expenses] == ["ZAK/1"]

    issued = invoicing_service.list_invoices(db_session, ctx, business_profile_id=profile.id, status_filter="ISSUED")
    assert [row.id for row in issued] == [income.id]

    march = invoicing_service.list_invoices(
        db_session,
        ctx,
        business_profile_id=profile.id,
        start_date=date(2026, 3, 1),
        end_date=date(2026, 3, 31),
    )
    assert [row.id for row in march] == [income.id]
