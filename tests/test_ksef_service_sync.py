from __future__ import annotations

import uuid
from collections.abc import Callable, Generator, Iterator
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ksiegai import audit, events
from ksiegai.business.invoicing.schemas import InvoiceCreate
from ksiegai.business.invoicing.service import invoicing_service
from ksiegai.business.profiles.schemas import BusinessProfileCreate
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.database import Base
import ksiegai.models  # noqa: F401
from ksiegai.integrations.ksef.client import InvoiceMetadata, SubmitInvoiceResult
from ksiegai.integrations.ksef.errors import KsefError, KsefErrorType
from ksiegai.integrations.ksef.models import KsefReceivedInvoice, KsefSyncRun, KsefSyncState
from ksiegai.integrations.ksef.schemas import KsefTokensStore
from ksiegai.integrations.ksef.service import KsefService
from ksiegai.integrations.ksef.sync import KsefSyncJob, SyncJobConfig
from ksiegai.integrations.ksef.tokens import KsefTokenManager, KsefTokenRegistry, TokenInfo
from ksiegai.integrations.ksef.validators import build_ksef_number
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.policies import InMemoryPolicyBackend, set_policy_backend


NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


class NullTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay

    def start(self) -> None:
        return None

    def cancel(self) -> None:
        return None


class FakeKsefClient:
    def __init__(self, metadata: dict[str, list[InvoiceMetadata]] | None = None, *, fail_with: KsefError | None = None) -> None:
        self.metadata = metadata or {}
        self.fail_with = fail_with
        self.tokens: list[str] = []
        self.submitted: list[str] = []
        self.queries: list[tuple[str, datetime]] = []
        self.closed = False
        self.active = False
        self.refreshed: list[str] = []

    def init_session(self, token: str) -> dict[str, str]:
        self.tokens.append(token)
        self.active = True
        return {"session_token": token}

    def terminate_session(self) -> None:
        self.active = False

    def close(self) -> None:
        self.closed = True

    def refresh_access_token(self, refresh_token: str) -> TokenInfo:
        self.refreshed.append(refresh_token)
        return TokenInfo.issued(f"{refresh_token}-renewed", 900)

    def submit_invoice(self, invoice_xml: str) -> SubmitInvoiceResult:
        self.submitted.append(invoice_xml)
        return SubmitInvoiceResult(
            reference_number=f"REF-{len(self.submitted)}",
            processing_code=200,
            processing_description="Accepted",
            timestamp=NOW.isoformat(),
        )

    def iter_invoice_metadata(
        self,
        *,
        subject_type: str,
        date_from: datetime,
        date_to: datetime | None = None,
    ) -> Iterator[InvoiceMetadata]:
        self.queries.append((subject_type, date_from))
        if self.fail_with is not None:
            raise self.fail_with
        yield from self.metadata.get(subject_type, [])


def _metadata(ksef_number: str, stored_at: datetime, amount: str = "123.00") -> InvoiceMetadata:
    return InvoiceMetadata(
        ksef_number=ksef_number,
        invoice_number=f"FV/{ksef_number[-6:]}",
        issue_date=stored_at.date(),
        seller_nip="1111111111",
        seller_name="Dostawca",
        buyer_nip="5260250274",
        total_gross_amount=Decimal(amount),
        currency="PLN",
        permanent_storage_date=stored_at,
    )


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def reset_policy_backend() -> Generator[None, None, None]:
    set_policy_backend(InMemoryPolicyBackend(default_allow=True))
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    set_policy_backend(InMemoryPolicyBackend(default_allow=True))


@pytest.fixture()
def ctx() -> AuthContext:
    return AuthContext(user_id="owner-1")


@pytest.fixture()
def registry() -> KsefTokenRegistry:
    return KsefTokenRegistry(lambda: KsefTokenManager(timer_factory=NullTimer))


def _profile(session: Session, ctx: AuthContext, name: str, nip: str, *, ksef_enabled: bool = True) -> uuid.UUID:
    profile = business_profile_service.create_profile(
        session,
        ctx,
        BusinessProfileCreate(name=name, nip=nip, ksef_enabled=ksef_enabled),
    )
    return profile.id


def _store_token(registry: KsefTokenRegistry, profile_id: uuid.UUID, token: str) -> None:
    registry.get(str(profile_id)).store_tokens(
        TokenInfo.issued(token, 3600),
        TokenInfo.issued(f"{token}-refresh", 86400),
        company_id=str(profile_id),
        context_type="nip",
        context_value="5260250274",
    )


def _income_invoice(session: Session, ctx: AuthContext, profile_id: uuid.UUID, *, issue: bool = True) -> uuid.UUID:
    created = invoicing_service.create_invoice(
        session,
        ctx,
        InvoiceCreate.model_validate(
            {
                "business_profile_id": profile_id,
                "counterparty_name": "Odbiorca sp. z o.o.",
                "counterparty_nip": "1111111111",
                "issue_date": "2026-03-14",
                "lines": [{"name": "Usługa", "quantity": "1", "unit_price_net": "100", "vat_rate": "23"}],
            }
        ),
    )
    if issue:
        invoicing_service.issue_invoice(session, ctx, created.id)
    return created.id


def test_submit_confirm_and_qr(db_session: Session, ctx: AuthContext, registry: KsefTokenRegistry) -> None:
    client = FakeKsefClient()
    service = KsefService(client_factory=lambda: client, tokens=registry)
    profile_id = _profile(db_session, ctx, "Jan Nowak Usługi", "5260250274")

    draft_id = _income_invoice(db_session, ctx, profile_id, issue=False)
    with pytest.raises(HTTPException) as exc_info:
        service.submit_invoice_to_ksef(db_session, ctx, draft_id, token="session-token")
    assert exc_info.value.status_code == 409

    invoice_id = _income_invoice(db_session, ctx, profile_id)
    submitted = service.submit_invoice_to_ksef(db_session, ctx, invoice_id, token="session-token")
    assert submitted.ksef_status == "SUBMITTED"
    assert submitted.ksef_reference_number == "REF-1"
    assert client.tokens == ["session-token"]
    assert "<NIP>5260250274</NIP>" in client.submitted[0]
    assert client.active is False
    assert client.closed is True

    with pytest.raises(HTTPException) as exc_info:
        service.submit_invoice_to_ksef(db_session, ctx, invoice_id, token="session-token")
    assert exc_info.value.status_code == 409

    with pytest.raises(HTTPException) as exc_info:
        service.confirm_ksef_number(db_session, ctx, invoice_id, "5260250274-20260314-ABCDEF012345-ZZ")
    assert exc_info.value.status_code == 422

    foreign = build_ksef_number("1111111111", date(2026, 3, 14), "ABCDEF012345")
    with pytest.raises(HTTPException) as exc_info:
        service.confirm_ksef_number(db_session, ctx, invoice_id, foreign)
    assert exc_info.value.status_code == 422

    ksef_number = build_ksef_number("5260250274", date(2026, 3, 14), "ABCDEF012345")
    accepted = service.confirm_ksef_number(db_session, ctx, invoice_id, ksef_number)
    assert accepted.ksef_status == "ACCEPTED"
    assert accepted.ksef_number == ksef_number

    qr = service.invoice_qr_code(db_session, ctx, invoice_id)
    assert qr.label == ksef_number
    assert qr.url.startswith("https://qr-test.ksef.mf.gov.pl/invoice/5260250274/14-03-2026/")

    actions = [entry["action"] for entry in audit.audit_entries if entry["entity_type"] == "invoicing.invoice"]
    assert actions[-2:] == ["ksef_submit", "ksef_confirm"]
    assert {"ksef.invoice.submitted", "ksef.invoice.accepted"} <= {event["event_type"] for event in events.published_events}


def test_submit_uses_stored_token_and_requires_enabled_profile(
    db_session: Session,
    ctx: AuthContext,
    registry: KsefTokenRegistry,
) -> None:
    client = FakeKsefClient()
    service = KsefService(client_factory=lambda: client, tokens=registry)

    disabled_id = _profile(db_session, ctx, "Bez KSeF", "1111111111", ksef_enabled=False)
    disabled_invoice = _income_invoice(db_session, ctx, disabled_id)
    with pytest.raises(HTTPException) as exc_info:
        service.submit_invoice_to_ksef(db_session, ctx, disabled_invoice, token="session-token")
    assert exc_info.value.status_code == 409

    profile_id = _profile(db_session, ctx, "Jan Nowak Usługi", "5260250274")
    invoice_id = _income_invoice(db_session, ctx, profile_id)
    with pytest.raises(KsefError) as ksef_exc:
        service.submit_invoice_to_ksef(db_session, ctx, invoice_id)
    assert ksef_exc.value.error_type == KsefErrorType.AUTHENTICATION

    _store_token(registry, profile_id, "stored-token")
    service.submit_invoice_to_ksef(db_session, ctx, invoice_id)
    assert client.tokens == ["stored-token"]

    status_read = service.token_status(db_session, ctx, profile_id)
    assert status_read.has_tokens is True
    assert status_read.access_token_valid is True
    assert service.token_status(db_session, ctx, disabled_id).has_tokens is False


def test_sync_profile_advances_high_water_mark_and_deduplicates(
    db_session: Session,
    ctx: AuthContext,
    registry: KsefTokenRegistry,
) -> None:
    profile_id = _profile(db_session, ctx, "Jan Nowak Usługi", "5260250274")
    _store_token(registry, profile_id, "sync-token")
    first = build_ksef_number("1111111111", date(2026, 3, 1), "000000000001")
    second = build_ksef_number("1111111111", date(2026, 3, 2), "000000000002")
    client = FakeKsefClient(
        {
            "subject2": [
                _metadata(first, datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)),
                _metadata(second, datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc), "246.00"),
            ]
        }
    )
    service = KsefService(client_factory=lambda: client, tokens=registry)

    result = service.sync_profile(db_session, ctx, profile_id, "subject2", now=NOW)
    assert result.invoices_synced == 2
    assert result.new_high_water_mark == datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
    assert client.queries == [("subject2", NOW - timedelta(days=30))]
    assert client.tokens == ["sync-token"]

    again = service.sync_profile(db_session, ctx, profile_id, "subject2", now=NOW)
    assert again.invoices_synced == 2
    assert client.queries[-1][1].replace(tzinfo=timezone.utc) == datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
    assert db_session.scalar(select(func.count()).select_from(KsefReceivedInvoice)) == 2

    received = service.list_received_invoices(db_session, ctx, business_profile_id=profile_id, subject_type="subject2")
    assert [row.ksef_number for row in received] == [second, first]
    assert service.list_received_invoices(db_session, ctx, business_profile_id=profile_id, subject_type="subject1") == []

    state = db_session.scalar(select(KsefSyncState).where(KsefSyncState.business_profile_id == profile_id))
    assert state.invoices_synced == 4
    assert state.last_error is None

    with pytest.raises(HTTPException) as exc_info:
        service.sync_profile(db_session, ctx, profile_id, "subject9", now=NOW)
    assert exc_info.value.status_code == 422


def test_sync_profile_records_failure(db_session: Session, ctx: AuthContext, registry: KsefTokenRegistry) -> None:
    profile_id = _profile(db_session, ctx, "Jan Nowak Usługi", "5260250274")
    _store_token(registry, profile_id, "sync-token")
    client = FakeKsefClient(fail_with=KsefError(KsefErrorType.SERVER, "KSeF unavailable", retryable=True))
    service = KsefService(client_factory=lambda: client, tokens=registry)

    with pytest.raises(KsefError):
        service.sync_profile(db_session, ctx, profile_id, "subject1", now=NOW)

    state = db_session.scalar(select(KsefSyncState).where(KsefSyncState.business_profile_id == profile_id))
    assert state.last_error == "KSeF unavailable"
    assert state.high_water_mark is None
    assert client.active is False


def test_sync_job_isolates_failing_profiles(
    session_factory: sessionmaker,
    db_session: Session,
    ctx: AuthContext,
    registry: KsefTokenRegistry,
) -> None:
    with_token = _profile(db_session, ctx, "Z tokenem", "5260250274")
    without_token = _profile(db_session, ctx, "Bez tokenu", "1111111111")
    _profile(db_session, ctx, "Wyłączony", "1234563218", ksef_enabled=False)
    _store_token(registry, with_token, "sync-token")

    stored_at = NOW - timedelta(days=1)
    number = build_ksef_number("1111111111", stored_at.date(), "000000000009")
    service = KsefService(
        client_factory=lambda: FakeKsefClient({"subject1": [_metadata(number, stored_at)]}),
        tokens=registry,
    )
    sleeps: list[float] = []
    job = KsefSyncJob(
        config=SyncJobConfig(max_concurrent_profiles=1, retry_attempts=2, retry_delay_ms=10),
        service=service,
        session_factory=session_factory,
        sleep=sleeps.append,
        clock=lambda: NOW,
    )

    results = job.run_once(trigger="manual")

    assert [item.business_profile_id for item in results] == [with_token, without_token]
    assert all(item.success for item in results)
    assert results[0].invoices_synced == 1
    assert [subject.errors for subject in results[0].subjects] == [[], [], []]
    assert all(subject.attempts == 1 for subject in results[1].subjects)
    assert all(len(subject.errors) == 1 for subject in results[1].subjects)
    assert sleeps.count(0.01) == 0
    assert 2.0 in sleeps

    stats = job.get_stats()
    assert stats.total_profiles == 2
    assert stats.successful_profiles == 2
    assert stats.total_invoices_synced == 1
    assert stats.next_run_at == NOW + timedelta(minutes=15)
    assert stats.is_running is False

    runs = service.list_sync_runs(db_session)
    assert len(runs) == 1
    assert runs[0].trigger == "manual"
    assert runs[0].profiles_synced == 2
    assert db_session.scalar(select(func.count()).select_from(KsefSyncRun)) == 1

    manual = job.sync_profile_now(with_token)
    assert manual.success is True
    with pytest.raises(HTTPException) as exc_info:
        job.sync_profile_now(uuid.uuid4())
    assert exc_info.value.status_code == 404


def test_stored_tokens_refresh_through_the_ksef_client(db_session: Session, ctx: AuthContext, registry: KsefTokenRegistry) -> None:
    profile_id = _profile(db_session, ctx, "Jan Nowak Usługi", "5260250274")
    client = FakeKsefClient()
    service = KsefService(client_factory=lambda: client, tokens=registry)

    status = service.store_tokens(
        db_session,
        ctx,
        KsefTokensStore(
            business_profile_id=profile_id,
            access_token="short-lived",
            access_token_expires_in=60,
            refresh_token="refresh-1",
            refresh_token_expires_in=86400,
        ),
    )
    assert status.has_tokens is True
    assert registry.get(str(profile_id)).get_tokens().context_type == "nip"

    service.sync_profile(db_session, ctx, profile_id, "subject1", now=NOW)

    assert client.refreshed == ["refresh-1"]
    assert client.tokens == ["refresh-1-renewed"]
    assert any(entry["action"] == "ksef_tokens_stored" for entry in audit.audit_entries)

    cleared = service.clear_tokens(db_session, ctx, profile_id)
    assert cleared.has_tokens is False
    assert registry.find(str(profile_id)) is None


def test_sync_retries_only_retryable_errors(
    session_factory: sessionmaker,
    db_session: Session,
    ctx: AuthContext,
    registry: KsefTokenRegistry,
) -> None:
    profile_id = _profile(db_session, ctx, "Jan Nowak Usługi", "5260250274")
    _store_token(registry, profile_id, "sync-token")
    failures = {"error": KsefError(KsefErrorType.VALIDATION, "bad query")}
    service = KsefService(
        client_factory=lambda: FakeKsefClient(fail_with=failures["error"]),
        tokens=registry,
    )
    sleeps: list[float] = []
    job = KsefSyncJob(
        config=SyncJobConfig(max_concurrent_profiles=1, retry_attempts=3, retry_delay_ms=10),
        service=service,
        session_factory=session_factory,
        sleep=sleeps.append,
        clock=lambda: NOW,
    )

    rejected = job.sync_profile_now(profile_id)
    assert [subject.attempts for subject in rejected.subjects] == [1, 1, 1]
    assert sleeps.count(0.01) == 0

    failures["error"] = KsefError(KsefErrorType.SERVER, "KSeF unavailable", retryable=True)
    unavailable = job.sync_profile_now(profile_id)
    assert [subject.attempts for subject in unavailable.subjects] == [3, 3, 3]
    assert all(len(subject.errors) == 3 for subject in unavailable.subjects)
    assert sleeps.count(0.01) == 6
