from __future__ import annotations

import uuid

from sqlalchemy import String, Uuid, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

import pytest

from ksiegai import audit
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ProfileScopeError
from ksiegai.platform.security.rls import (
    apply_rls_filter,
    scoped_profile_ids,
    validate_rls_read_scope,
    validate_rls_write,
)


class Base(DeclarativeBase):
    pass


class DemoScopedModel(Base):
    __tablename__ = "demo_scoped_model"

    id: Mapped[int] = mapped_column(primary_key=True)
    business_profile_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True))
    label: Mapped[str] = mapped_column(String(32))


@pytest.fixture(autouse=True)
def clear_audit() -> None:
    audit.audit_entries.clear()


def test_apply_rls_filter_adds_business_profile_filter() -> None:
    ctx = AuthContext(user_id="u1", entity_scope=[str(uuid.uuid4())])
    stmt = apply_rls_filter(select(DemoScopedModel), "demo.resource", ctx)
    sql = str(stmt)

    assert "business_profile_id" in sql
    assert "IN" in sql


def test_apply_rls_filter_without_scope_is_unrestricted() -> None:
    ctx = AuthContext(user_id="u1")
    stmt = apply_rls_filter(select(DemoScopedModel), "demo.resource", ctx)

    assert "WHERE" not in str(stmt)
    assert scoped_profile_ids(ctx) is None


def test_validate_rls_write_blocks_out_of_scope_values() -> None:
    allowed = uuid.uuid4()
    ctx = AuthContext(user_id="u2", entity_scope=[str(allowed)], correlation_id="corr-rls-1")

    validate_rls_write("customers.customer", {"business_profile_id": allowed}, ctx)

    with pytest.raises(AuthorizationError):
        validate_rls_write("customers.customer", {"business_profile_id": uuid.uuid4()}, ctx)

    denied = [entry for entry in audit.audit_entries if entry["action"] == "rls.denied"]
    assert denied
    assert denied[-1]["correlation_id"] == "corr-rls-1"


def test_validate_rls_write_uses_existing_scope_when_payload_has_none() -> None:
    ctx = AuthContext(user_id="u2", entity_scope=[str(uuid.uuid4())])

    with pytest.raises(AuthorizationError):
        validate_rls_write(
            "invoicing.invoice",
            {"notes": "changed"},
            ctx,
            existing_scope={"business_profile_id": str(uuid.uuid4())},
        )


def test_validate_rls_read_scope_rejects_foreign_profile() -> None:
    ctx = AuthContext(user_id="u3", entity_scope=[str(uuid.uuid4())])

    foreign = uuid.uuid4()
    with pytest.raises(ProfileScopeError) as exc_info:
        validate_rls_read_scope("ledger.entry", ctx, business_profile_id=foreign)
    assert exc_info.value.business_profile_id == str(foreign)
    assert exc_info.value.action == "read"
    assert isinstance(exc_info.value, AuthorizationError)


def test_validate_rls_write_admin_bypass() -> None:
    ctx = AuthContext(user_id="admin", entity_scope=[str(uuid.uuid4())], is_super_admin=True)

    validate_rls_write("customers.customer", {"business_profile_id": uuid.uuid4()}, ctx)
    assert scoped_profile_ids(ctx) is None
