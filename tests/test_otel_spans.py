from __future__ import annotations

import os
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from ksiegai.core.auth import AuthUser, get_current_user
from ksiegai.core.config import get_settings
from ksiegai.core.database import Base, get_db
from ksiegai.main import app
from ksiegai.middleware.rate_limit import reset_rate_limiter
from ksiegai.otel import setup_inmemory_otel
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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=["owner", "periods.lock"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    set_policy_backend(InMemoryPolicyBackend(default_allow=True))
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post(
        "/api/profiles",
        json={"name": "Ślady", "nip": "5260250274"},
        headers={"X-Correlation-Id": "otel-corr-1"},
    )
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_auto_lock_span_records_outcome(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    profile = client.post("/api/profiles", json={"name": "Ślady", "nip": "5260250274"})
    assert profile.status_code == 201
    profile_id = profile.json()["id"]

    response = client.post(
        "/api/periods/auto-lock",
        json={"business_profile_id": profile_id, "today": "2026-03-25", "dry_run": True, "max_days_overdue": 40},
        headers={"X-Correlation-Id": "otel-lock-1"},
    )
    assert response.status_code == 200

    lock_spans = [span for span in span_exporter.get_finished_spans() if span.name == "periods.auto_lock"]
    assert lock_spans
    assert any(
        span.attributes.get("business_profile_id") == profile_id
        and span.attributes.get("dry_run") is True
        and span.attributes.get("locked") == 2
        for span in lock_spans
    )
