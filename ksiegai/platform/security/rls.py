from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import false
from sqlalchemy.sql import Select

from ksiegai import audit
from ksiegai.metrics import observe_rls_denied_read, observe_rls_denied_write
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import ProfileScopeError


_SCOPE_COLUMN = "business_profile_id"


def is_admin_bypass(ctx: AuthContext) -> bool:
    if ctx.is_super_admin:
        return True
    role_set = {item.lower() for item in ctx.roles}
    permission_set = {item.lower() for item in ctx.permissions}
    return "admin" in role_set or "admin" in permission_set or "system.admin" in permission_set


def scoped_profile_ids(ctx: AuthContext) -> list[uuid.UUID] | None:
    """Return the profile ids the caller is limited to, or None when unrestricted."""

    if is_admin_bypass(ctx):
        return None
    raw_scope = [value for value in ctx.entity_scope if value]
    if not raw_scope:
        return None
    parsed: list[uuid.UUID] = []
    for value in raw_scope:
        try:
            parsed.append(uuid.UUID(str(value)))
        except ValueError:
            continue
    return parsed


def apply_rls_filter(query: Select[Any], resource: str, ctx: AuthContext) -> Select[Any]:
    """Restrict a query to the caller's business profiles.

    Models are scoped through their ``business_profile_id`` column; the
    ``BusinessProfile`` model itself is scoped through its primary key.
    """

    profile_ids = scoped_profile_ids(ctx)
    if profile_ids is None:
        return query

    for description in query.column_descriptions:
        model = description.get("entity")
        if model is None:
            continue
        column = getattr(model, _SCOPE_COLUMN, None)
        if column is None and getattr(model, "__tablename__", None) == "business_profiles":
            column = getattr(model, "id")
        if column is None:
            continue
        if not profile_ids:
            query = query.where(false())
        else:
            query = query.where(column.in_(profile_ids))

    return query


def validate_rls_write(
    resource: str,
    payload: dict[str, Any],
    ctx: AuthContext,
    *,
    action: str = "write",
    existing_scope: dict[str, str | None] | None = None,
) -> None:
    """Reject writes that target a business profile outside the caller's scope."""

    profile_ids = scoped_profile_ids(ctx)
    if profile_ids is None:
        return

    value = payload.get(_SCOPE_COLUMN)
    if value is None and existing_scope is not None:
        value = existing_scope.get(_SCOPE_COLUMN)
    if value is None:
        return

    if not _in_scope(value, profile_ids):
        _emit_rls_denied(resource=resource, action=action, scope_value=str(value), ctx=ctx, is_read=False)
        raise ProfileScopeError(resource, str(value), action=action)


def validate_rls_read_scope(
    resource: str,
    ctx: AuthContext,
    *,
    business_profile_id: uuid.UUID | str | None,
    action: str = "read",
) -> None:
    """Validate record-level read scope for records loaded by id."""

    profile_ids = scoped_profile_ids(ctx)
    if profile_ids is None or business_profile_id is None:
        return

    if not _in_scope(business_profile_id, profile_ids):
        _emit_rls_denied(
            resource=resource,
            action=action,
            scope_value=str(business_profile_id),
            ctx=ctx,
            is_read=True,
        )
        raise ProfileScopeError(resource, str(business_profile_id), action=action)


def _in_scope(value: uuid.UUID | str, profile_ids: list[uuid.UUID]) -> bool:
    try:
        candidate = value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        return False
    return candidate in set(profile_ids)


def _emit_rls_denied(
    *,
    resource: str,
    action: str,
    scope_value: str,
    ctx: AuthContext,
    is_read: bool,
) -> None:
    if is_read:
        observe_rls_denied_read(resource=resource, scope_type="business_profile")
    else:
        observe_rls_denied_write(resource=resource, scope_type="business_profile")

    audit.record(
        actor_user_id=ctx.user_id,
        entity_type="security.rls",
        entity_id="scope",
        action="rls.denied",
        before=None,
        after={
            "resource": resource,
            "action": action,
            "scope_type": "business_profile",
            "scope_value": scope_value,
            "correlation_id": ctx.correlation_id,
            "user_id": ctx.user_id,
        },
        correlation_id=ctx.correlation_id,
    )
