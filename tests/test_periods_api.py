from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ksiegai import audit, events
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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


def _client(db_session: Session, roles: list[str]) -> TestClient:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_current_user() -> AuthUser:
        return AuthUser(sub="owner-1", roles=roles)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    set_policy_backend(InMemoryPolicyBackend(default_allow=True))
    return TestClient(app)


@pytest.fixture()
def owner_client(db_session: Session) -> Generator[TestClient, None, None]:
    with _client(db_session, ["owner"]) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def locker_client(db_session: Session) -> Generator[TestClient, None, None]:
    with _client(db_session, ["owner", "periods.lock"]) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _profile(test_client: TestClient) -> str:
    response = test_client.post("/api/profiles", json={"name": "Warsztat", "nip": "5260250274"})
    assert response.status_code == 201
    return response.json()["id"]


def test_get_period_creates_open_period_and_validates_month(owner_client: TestClient) -> None:
    profile_id = _profile(owner_client)

    period = owner_client.get(f"/api/periods/{profile_id}/2026/2")
    assert period.status_code == 200
    assert period.json()["status"] == "OPEN"
    assert period.json()["month"] == 2

    invalid = owner_client.get(f"/api/periods/{profile_id}/2026/13")
    assert invalid.status_code == 422
    assert invalid.json()["detail"] == "month must be between 1 and 12"

    listed = owner_client.get("/api/periods", params={"business_profile_id": profile_id, "year": 2026})
    assert [row["month"] for row in listed.json()] == [2]


def test_close_and_reopen_endpoints(owner_client: TestClient) -> None:
    profile_id = _profile(owner_client)

    closed = owner_client.post(f"/api/periods/{profile_id}/2026/1/close")
    assert closed.status_code == 200
    assert closed.json()["status"] == "CLOSED"

    closed_again = owner_client.post(f"/api/periods/{profile_id}/2026/1/close")
    assert closed_again.status_code == 409
    assert "correlation_id" in closed_again.json()

    reopened = owner_client.post(f"/api/periods/{profile_id}/2026/1/reopen")
    assert reopened.status_code == 200
    assert reopened.json()["status"] == "OPEN"


def test_lock_requires_periods_lock_permission(owner_client: TestClient) -> None:
    profile_id = _profile(owner_client)

    denied = owner_client.post(f"/api/periods/{profile_id}/2026/1/lock", json={"reason": "JPK wysłany"})
    assert denied.status_code == 403

    auto_denied = owner_client.post("/api/periods/auto-lock", json={"business_profile_id": profile_id})
    assert auto_denied.status_code == 403


def test_lock_and_auto_lock_with_permission(locker_client: TestClient) -> None:
    profile_id = _profile(locker_client)

    locked = locker_client.post(f"/api/periods/{profile_id}/2026/1/lock", json={"reason": "JPK wysłany"})
    assert locked.status_code == 200
    assert locked.json()["status"] == "LOCKED"
    assert locked.json()["locked_by"] == "owner-1"

    missing_reason = locker_client.post(f"/api/periods/{profile_id}/2026/2/lock", json={"reason": ""})
    assert missing_reason.status_code == 422

    preview = locker_client.post(
        "/api/periods/auto-lock",
        json={"business_profile_id": profile_id, "today": "2026-03-25", "dry_run": True},
    )
    assert preview.status_code == 200
    body = preview.json()
    assert body["dry_run"] is True
    assert {(item["year"], item["month"]) for item in body["locked"]} >= {(2026, 2)}
    assert (2026, 1) not in {(item["year"], item["month"]) for item in body["locked"]}

    checks = locker_client.get("/api/periods/check", params={"business_profile_id": profile_id})
    assert checks.status_code == 200
    assert all("tax_deadline" in row for row in checks.json())
