from __future__ import annotations

from fastapi import Depends, Header, Request

from ksiegai.context import get_correlation_id
from ksiegai.core.auth import AuthUser, get_current_user as get_auth_user
from ksiegai.platform.security.context import AuthContext


def _parse_str_list(raw: str | None) -> list[str]:
    if raw is None:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def get_request_auth_context(
    request: Request,
    auth_user: AuthUser = Depends(get_auth_user),
    profile_scope_header: str | None = Header(default=None, alias="x-allowed-business-profiles"),
) -> AuthContext:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "correlation_id", None) or None
    roles = [str(item) for item in auth_user.roles]
    normalized = {item.lower() for item in roles}

    entity_scope = _parse_str_list(profile_scope_header) or list(auth_user.business_profile_ids)

    return AuthContext(
        user_id=auth_user.sub,
        correlation_id=correlation_id,
        is_super_admin=("admin" in normalized or "system.admin" in normalized),
        roles=roles,
        permissions=roles,
        entity_scope=entity_scope,
    )
