from __future__ import annotations

import uuid
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.interfaces import ORMOption
from sqlalchemy.sql import Select

from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.fls import apply_fls_read, apply_fls_read_many, validate_fls_write
from ksiegai.platform.security.rls import apply_rls_filter, validate_rls_read_scope, validate_rls_write


ModelT = TypeVar("ModelT")


class BaseRepository:
    """Profile scoping and field-level security for one resource (``invoicing.invoice``...)."""

    resource = ""

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        return apply_rls_filter(query, self.resource, ctx)

    def get_scoped(
        self,
        session: Session,
        ctx: AuthContext,
        model: type[ModelT],
        record_id: uuid.UUID,
        *options: ORMOption,
    ) -> ModelT | None:
        """Load a record by id, returning None when missing or owned by a profile outside the scope."""

        stmt = select(model).where(model.id == record_id)  # type: ignore[attr-defined]
        if options:
            stmt = stmt.options(*options)
        return session.scalar(self.apply_scope_query(stmt, ctx))

    def apply_read_security(self, record: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
        return apply_fls_read(self.resource, record, ctx)

    def apply_read_security_many(self, records: list[dict[str, Any]], ctx: AuthContext) -> list[dict[str, Any]]:
        return apply_fls_read_many(self.resource, records, ctx)

    def validate_write_security(
        self,
        payload: dict[str, Any],
        ctx: AuthContext,
        *,
        existing_scope: dict[str, str | None] | None = None,
        action: str = "write",
    ) -> None:
        validate_rls_write(self.resource, payload, ctx, existing_scope=existing_scope, action=action)
        validate_fls_write(self.resource, self._normalize_write_payload(payload), ctx)

    def validate_read_scope(
        self,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID | str | None,
        action: str = "read",
    ) -> None:
        validate_rls_read_scope(
            self.resource,
            ctx,
            business_profile_id=business_profile_id,
            action=action,
        )

    @staticmethod
    def _normalize_write_payload(payload: dict[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in payload.items() if key != "business_profile_id"}
