from __future__ import annotations

import uuid
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


def _create_profile(client: TestClient, nip: str = "5260250274", **overrides: object) -> dict:
    payload = {"name": "Usługi IT Jan Kowalski", "nip": nip, "city": "Warszawa", "postal_code": "00-001"}
    payload.update(overrides)
    response = client.post("/api/profiles", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_first_profile_becomes_default_and_set_default_switches(client: TestClient) -> None:
    first = _create_profile(client, "5260250274")
    second = _create_profile(client, "1234563218", name="Druga działalność")
    assert first["is_default"] is True
    assert second["is_default"] is False

    switched = client.post(f"/api/profiles/{second['id']}/set-default")
    assert switched.status_code == 200
    assert switched.json()["is_default"] is True

    listed = client.get("/api/profiles")
    assert listed.status_code == 200
    defaults = [row for row in listed.json() if row["is_default"]]
    assert [row["id"] for row in defaults] == [second["id"]]


def test_profile_rejects_invalid_nip_and_duplicates(client: TestClient) -> None:
    invalid = client.post("/api/profiles", json={"name": "Zły NIP", "nip": "1234567890"})
    assert invalid.status_code == 422

    _create_profile(client, "526-025-02-74")
    duplicate = client.post("/api/profiles", json={"name": "Duplikat", "nip": "5260250274"})
    assert duplicate.status_code == 409


def test_ryczalt_profile_requires_supported_rate(client: TestClient) -> None:
    missing = client.post("/api/profiles", json={"name": "Ryczałt", "nip": "5260250274", "tax_type": "RYCZALT"})
    assert missing.status_code == 422

    unsupported = client.post(
        "/api/profiles",
        json={"name": "Ryczałt", "nip": "5260250274", "tax_type": "RYCZALT", "ryczalt_rate": "9"},
    )
    assert unsupported.status_code == 422

    created = _create_profile(client, tax_type="RYCZALT", ryczalt_rate="12.5")
    assert created["tax_type"] == "RYCZALT"

    switched = client.patch(f"/api/profiles/{created['id']}", json={"tax_type": "LINIOWY"})
    assert switched.status_code == 200
    assert switched.json()["ryczalt_rate"] is None


def test_profile_outside_scope_is_forbidden(client: TestClient) -> None:
    profile = _create_profile(client)

    response = client.get(
        f"/api/profiles/{profile['id']}",
        headers={"x-allowed-business-profiles": str(uuid.uuid4())},
    )
    assert response.status_code == 403
    assert any(entry["action"] == "rls.denied" for entry in audit.audit_entries)

    missing = client.get(f"/api/profiles/{uuid.uuid4()}")
    assert missing.status_code == 404


def test_customer_crud_search_and_type_filter(client: TestClient) -> None:
    profile = _create_profile(client)
    base = {"business_profile_id": profile["id"]}

    buyer = client.post("/api/customers", json={**base, "name": "Alfa Sp. z o.o.", "nip": "1111111111"})
    assert buyer.status_code == 201
    supplier = client.post(
        "/api/customers",
        json={**base, "name": "Beta Hurt", "nip": "2222222222", "customer_type": "SUPPLIER"},
    )
    assert supplier.status_code == 201
    both = client.post("/api/customers", json={**base, "name": "Gamma", "customer_type": "BOTH"})
    assert both.status_code == 201

    bad_nip = client.post("/api/customers", json={**base, "name": "Zły", "nip": "1111111112"})
    assert bad_nip.status_code == 422

    searched = client.get("/api/customers", params={"business_profile_id": profile["id"], "search": "alfa"})
    assert [row["name"] for row in searched.json()] == ["Alfa Sp. z o.o."]

    by_nip = client.get("/api/customers", params={"business_profile_id": profile["id"], "search": "2222"})
    assert [row["name"] for row in by_nip.json()] == ["Beta Hurt"]

    suppliers = client.get(
        "/api/customers",
        params={"business_profile_id": profile["id"], "customer_type": "SUPPLIER"},
    )
    assert {row["name"] for row in suppliers.json()} == {"Beta Hurt", "Gamma"}

    updated = client.patch(f"/api/customers/{buyer.json()['id']}", json={"email": "biuro@alfa.pl"})
    assert updated.status_code == 200
    assert updated.json()["email"] == "biuro@alfa.pl"

    deactivated = client.post(f"/api/customers/{buyer.json()['id']}/deactivate")
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False

    active = client.get("/api/customers", params={"business_profile_id": profile["id"]})
    assert buyer.json()["id"] not in {row["id"] for row in active.json()}

    missing = client.get(f"/api/customers/{uuid.uuid4()}")
    assert missing.status_code == 404


def test_product_crud(client: TestClient) -> None:
    profile = _create_profile(client)

    created = client.post(
        "/api/products",
        json={
            "business_profile_id": profile["id"],
            "name": "Konsultacja",
            "unit": "godz",
            "unit_price_net": "250.00",
            "vat_rate": "23",
        },
    )
    assert created.status_code == 201
    product = created.json()
    assert product["product_type"] == "SERVICE"

    negative = client.post(
        "/api/products",
        json={"business_profile_id": profile["id"], "name": "Ujemny", "unit_price_net": "-1"},
    )
    assert negative.status_code == 422

    bad_rate = client.post(
        "/api/products",
        json={"business_profile_id": profile["id"], "name": "Stawka", "unit_price_net": "10", "vat_rate": "7"},
    )
    assert bad_rate.status_code == 422

    updated = client.patch(f"/api/products/{product['id']}", json={"vat_rate": "8"})
    assert updated.status_code == 200
    assert updated.json()["vat_rate"] == "8"

    listed = client.get("/api/products", params={"business_profile_id": profile["id"]})
    assert [row["name"] for row in listed.json()] == ["Konsultacja"]

    deactivated = client.post(f"/api/products/{product['id']}/deactivate")
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False
