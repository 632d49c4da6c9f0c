from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ksiegai.core.auth import AuthUser, get_current_user
from ksiegai.core.config import get_settings
from ksiegai.core.database import Base, get_db
from ksiegai.main import app
from ksiegai.middleware.rate_limit import reset_rate_limiter
from ksiegai.platform.security.policies import InMemoryPolicyBackend, set_policy_backend


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("INVOICE_AUTO_POST", "true")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=["owner", "system.metrics.read"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_auth_user
    set_policy_backend(InMemoryPolicyBackend(default_allow=True))

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_accounting_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    profile = client.post("/api/profiles", json={"name": "Metryki", "nip": "5260250274"})
    assert profile.status_code == 201
    profile_id = profile.json()["id"]
    assert client.post("/api/ledger/seeds/chart-of-accounts", json={"business_profile_id": profile_id}).status_code in (200, 201)

    invoice = client.post(
        "/api/invoices",
        json={
            "business_profile_id": profile_id,
            "counterparty_name": "Odbiorca",
            "issue_date": "2026-03-14",
            "lines": [{"name": "Usługa", "quantity": "1", "unit_price_net": "100", "vat_rate": "23"}],
        },
    )
    assert invoice.status_code == 201
    issued = client.post(f"/api/invoices/{invoice.json()['id']}/issue")
    assert issued.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "invoices_issued_count" in body
    assert "ledger_entries_posted_count" in body

    assert 'path="/health"' in body
    assert 'path="/api/invoices/{id}/issue"' in body
    assert 'transaction_type="INCOME"' in body


def test_metrics_require_permission(client: TestClient) -> None:
    app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="owner-1", roles=["owner"])
    response = client.get("/metrics")
    assert response.status_code == 403
