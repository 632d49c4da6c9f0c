from __future__ import annotations

from dataclasses import dataclass, field

SYSTEM_USER_ID = "system"


@dataclass(slots=True)
class AuthContext:
    """Authorization context used by policy evaluation, FLS and business profile scoping.

    ``entity_scope`` holds the business profile ids the caller may act on. An
    empty scope means the caller is not restricted to particular profiles.
    """

    user_id: str
    correlation_id: str | None = None
    is_super_admin: bool = False
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    entity_scope: list[str] = field(default_factory=list)

    @classmethod
    def system(cls, *, correlation_id: str | None = None, business_profile_id: str | None = None) -> AuthContext:
        """Context for scheduled jobs (KSeF sync, period auto-lock)."""
        scope = [business_profile_id] if business_profile_id else []
        return cls(user_id=SYSTEM_USER_ID, correlation_id=correlation_id, is_super_admin=True, entity_scope=scope)
