from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ksiegai import audit, events
from ksiegai.core.auth import AuthUser, get_current_user
from ksiegai.core.config import get_settings
from ksiegai.core.database import Base, get_db
from ksiegai.integrations.ksef.client import SubmitInvoiceResult
from ksiegai.integrations.ksef.service import ksef_service
from ksiegai.integrations.ksef.tokens import KsefTokenManager, KsefTokenRegistry
from ksiegai.integrations.ksef.validators import build_ksef_number
from ksiegai.main import app
from ksiegai.middleware.rate_limit import reset_rate_limiter
from ksiegai.platform.security.policies import InMemoryPolicyBackend, set_policy_backend


class NullTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay

    def start(self) -> None:
        return None

    def cancel(self) -> None:
        return None


class FakeKsefClient:
    def __init__(self) -> None:
        self.submitted: list[str] = []
        self.tokens: list[str] = []

    def init_session(self, token: str) -> dict[str, str]:
        self.tokens.append(token)
        return {"session_token": token}

    def terminate_session(self) -> None:
        return None

    def close(self) -> None:
        return None

    def submit_invoice(self, invoice_xml: str) -> SubmitInvoiceResult:
        self.submitted.append(invoice_xml)
        return SubmitInvoiceResult(
            reference_number="REF-API-1",
            processing_code=200,
            processing_description="Accepted",
            timestamp="2026-03-14T10:00:00+00:00",
        )


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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def fake_client(monkeypatch: pytest.MonkeyPatch) -> FakeKsefClient:
    fake = FakeKsefClient()
    monkeypatch.setattr(ksef_service, "client_factory", lambda: fake)
    monkeypatch.setattr(ksef_service, "tokens", KsefTokenRegistry(lambda: KsefTokenManager(timer_factory=NullTimer)))
    return fake


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_current_user() -> AuthUser:
        return AuthUser(sub="owner-1", roles=["owner"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    set_policy_backend(InMemoryPolicyBackend(default_allow=True))
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _issued_invoice(client: TestClient, profile_id: str) -> str:
    created = client.post(
        "/api/invoices",
        json={
            "business_profile_id": profile_id,
            "counterparty_name": "Odbiorca sp. z o.o.",
            "counterparty_nip": "1111111111",
            "issue_date": "2026-03-14",
            "lines": [{"name": "Usługa", "quantity": "1", "unit_price_net": "100", "vat_rate": "23"}],
        },
    )
    assert created.status_code == 201
    invoice_id = created.json()["id"]
    assert client.post(f"/api/invoices/{invoice_id}/issue").status_code == 200
    return invoice_id


def test_submit_confirm_and_qr_endpoints(client: TestClient, fake_client: FakeKsefClient) -> None:
    profile = client.post("/api/profiles", json={"name": "Jan Nowak Usługi", "nip": "5260250274", "ksef_enabled": True})
    assert profile.status_code == 201
    profile_id = profile.json()["id"]
    invoice_id = _issued_invoice(client, profile_id)

    token_status = client.get("/api/ksef/tokens/status", params={"business_profile_id": profile_id})
    assert token_status.status_code == 200
    assert token_status.json()["has_tokens"] is False

    no_token = client.post(f"/api/ksef/invoices/{invoice_id}/submit", json={})
    assert no_token.status_code == 502
    assert no_token.json()["detail"]["error_type"] == "AUTHENTICATION"
    assert "correlation_id" in no_token.json()

    submitted = client.post(f"/api/ksef/invoices/{invoice_id}/submit", json={"token": "session-token"})
    assert submitted.status_code == 200
    assert submitted.json()["ksef_status"] == "SUBMITTED"
    assert submitted.json()["ksef_reference_number"] == "REF-API-1"
    assert len(fake_client.submitted) == 1

    short_number = client.post(f"/api/ksef/invoices/{invoice_id}/confirm", json={"ksef_number": "123"})
    assert short_number.status_code == 422

    ksef_number = build_ksef_number("5260250274", date(2026, 3, 14), "ABCDEF012345")
    confirmed = client.post(f"/api/ksef/invoices/{invoice_id}/confirm", json={"ksef_number": ksef_number})
    assert confirmed.status_code == 200
    assert confirmed.json()["ksef_number"] == ksef_number

    qr = client.get(f"/api/ksef/invoices/{invoice_id}/qr")
    assert qr.status_code == 200
    assert qr.json()["label"] == ksef_number
    assert qr.json()["png_base64"]

    received = client.get("/api/ksef/received-invoices", params={"business_profile_id": profile_id})
    assert received.status_code == 200
    assert received.json() == []

    bad_subject = client.get(
        "/api/ksef/received-invoices",
        params={"business_profile_id": profile_id, "subject_type": "subject7"},
    )
    assert bad_subject.status_code == 422


def test_sync_read_endpoints_require_permission(client: TestClient) -> None:
    assert client.get("/api/ksef/sync/stats").status_code == 403

    app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="owner-1", roles=["owner", "ksef.sync.read"])
    stats = client.get("/api/ksef/sync/stats")
    assert stats.status_code == 200
    assert stats.json()["is_running"] is False

    runs = client.get("/api/ksef/sync/runs")
    assert runs.status_code == 200
    assert runs.json() == []


def test_wildcard_roles_grant_sync_read(client: TestClient) -> None:
    app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="acc-1", roles=["accountant", "ksef.*"])
    assert client.get("/api/ksef/sync/stats").status_code == 200

    app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="acc-1", roles=["periods.*"])
    forbidden = client.get("/api/ksef/sync/runs")
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "Missing permissions: ksef.sync.read"


def test_stored_tokens_are_used_for_submission_and_can_be_cleared(client: TestClient, fake_client: FakeKsefClient) -> None:
    disabled = client.post("/api/profiles", json={"name": "Bez KSeF", "nip": "1111111111"})
    rejected = client.post(
        "/api/ksef/tokens",
        json={
            "business_profile_id": disabled.json()["id"],
            "access_token": "acc",
            "access_token_expires_in": 3600,
            "refresh_token": "ref",
            "refresh_token_expires_in": 86400,
        },
    )
    assert rejected.status_code == 409

    profile = client.post("/api/profiles", json={"name": "Jan Nowak Usługi", "nip": "5260250274", "ksef_enabled": True})
    profile_id = profile.json()["id"]
    invoice_id = _issued_invoice(client, profile_id)

    stored = client.post(
        "/api/ksef/tokens",
        json={
            "business_profile_id": profile_id,
            "access_token": "stored-access",
            "access_token_expires_in": 3600,
            "refresh_token": "stored-refresh",
            "refresh_token_expires_in": 86400,
        },
    )
    assert stored.status_code == 201
    assert stored.json()["has_tokens"] is True
    assert stored.json()["access_token_valid"] is True
    assert ksef_service.tokens.get(profile_id).get_tokens().context_value == "5260250274"

    submitted = client.post(f"/api/ksef/invoices/{invoice_id}/submit", json={})
    assert submitted.status_code == 200
    assert fake_client.tokens == ["stored-access"]

    cleared = client.delete("/api/ksef/tokens", params={"business_profile_id": profile_id})
    assert cleared.status_code == 200
    assert cleared.json()["has_tokens"] is False
    status = client.get("/api/ksef/tokens/status", params={"business_profile_id": profile_id})
    assert status.json()["has_tokens"] is False
