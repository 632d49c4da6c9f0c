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
from ksiegai.middleware.rate_limit import _TokenBucketLimiter, mutation_capacity, reset_rate_limiter, resolve_route_group
from ksiegai.platform.security.policies import InMemoryPolicyBackend, set_policy_backend


NIPS = ["5260250274", "1111111111", "1234563218", "7740001454", "5213017228"]


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
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=["owner"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    set_policy_backend(InMemoryPolicyBackend(default_allow=True))
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_mutating_endpoints_are_rate_limited(client: TestClient) -> None:
    responses = [
        client.post("/api/profiles", json={"name": f"Profil {index}", "nip": nip})
        for index, nip in enumerate(NIPS)
    ]

    limited = [response for response in responses if response.status_code == 429]
    assert limited

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] is not None
    assert first_limited.headers.get("Retry-After") is not None


def test_get_endpoints_are_not_rate_limited(client: TestClient) -> None:
    create = client.post("/api/profiles", json={"name": "Odczyt", "nip": NIPS[0]})
    assert create.status_code == 201

    responses = [client.get("/api/profiles") for _ in range(10)]
    assert all(response.status_code != 429 for response in responses)


def test_route_groups_have_separate_buckets(client: TestClient) -> None:
    profile_responses = [client.post("/api/profiles", json={"name": "Grupa", "nip": NIPS[0]}) for _ in range(4)]
    assert profile_responses[-1].status_code == 429

    calculation = client.post("/api/tax/zus", json={"base": "5000"})
    assert calculation.status_code == 200


def test_token_bucket_refills_over_the_window() -> None:
    now = {"value": 100.0}
    limiter = _TokenBucketLimiter(clock=lambda: now["value"])

    assert limiter.take("user-1", "invoices", capacity=2, window_seconds=4) == (True, 0)
    assert limiter.take("user-1", "invoices", capacity=2, window_seconds=4) == (True, 0)
    assert limiter.take("user-1", "invoices", capacity=2, window_seconds=4) == (False, 2)
    assert limiter.take("user-2", "invoices", capacity=2, window_seconds=4) == (True, 0)

    now["value"] += 2
    assert limiter.take("user-1", "invoices", capacity=2, window_seconds=4) == (True, 0)
    assert limiter.take("user-1", "invoices", capacity=0, window_seconds=60) == (False, 60)


def test_ksef_route_group_uses_its_own_capacity(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_KSEF_MUTATIONS_PER_MINUTE", "1")
    get_settings.cache_clear()

    assert resolve_route_group("/api/ksef/invoices/abc/submit") == "ksef"
    assert resolve_route_group("/metrics") == "api"
    assert mutation_capacity("ksef") == 1
    assert mutation_capacity("invoices") == 3
