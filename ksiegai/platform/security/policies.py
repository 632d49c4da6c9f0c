from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from threading import Lock
from typing import Protocol

from ksiegai.platform.security.context import AuthContext


class ResourceAction(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class FieldAction(StrEnum):
    READ = "field.read"
    MASK = "field.mask"
    EDIT = "field.edit"


class FieldDecision(StrEnum):
    ALLOW = "ALLOW"
    MASK = "MASK"
    DENY = "DENY"


@dataclass(slots=True)
class FieldEvaluationResult:
    field: str
    decision: FieldDecision


class PolicyBackend(Protocol):
    """Pluggable policy backend interface for RBAC/policy checks."""

    def is_resource_allowed(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        ...

    def evaluate_field_read(self, resource: str, field: str, ctx: AuthContext) -> FieldDecision:
        ...

    def can_edit_field(self, resource: str, field: str, ctx: AuthContext) -> bool:
        ...


class InMemoryPolicyBackend:
    """Role + direct-permission policy backend with wildcard support."""

    def __init__(self, role_permissions: dict[str, set[str]] | None = None, *, default_allow: bool = True) -> None:
        self._role_permissions = role_permissions or {}
        self._default_allow = default_allow

    def is_resource_allowed(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        if self._default_allow:
            return True
        required = f"{resource}.{action.value}"
        return self._has_permission(required, ctx)

    def evaluate_field_read(self, resource: str, field: str, ctx: AuthContext) -> FieldDecision:
        if self._default_allow:
            return FieldDecision.ALLOW

        mask_permission = f"{resource}.{FieldAction.MASK.value}:{field}"
        allow_permission = f"{resource}.{FieldAction.READ.value}:{field}"

        if self._has_explicit_permission(mask_permission, ctx):
            return FieldDecision.MASK
        if self._has_permission(allow_permission, ctx):
            return FieldDecision.ALLOW
        return FieldDecision.DENY

    def can_edit_field(self, resource: str, field: str, ctx: AuthContext) -> bool:
        if self._default_allow:
            return True

        edit_permission = f"{resource}.{FieldAction.EDIT.value}:{field}"
        return self._has_permission(edit_permission, ctx)

    def _grants(self, ctx: AuthContext) -> set[str]:
        grants = set(ctx.permissions)
        for role in ctx.roles:
            grants.update(self._role_permissions.get(role, set()))
        return grants

    def _has_permission(self, required: str, ctx: AuthContext) -> bool:
        return any(self._matches(grant, required) for grant in self._grants(ctx))

    def _has_explicit_permission(self, required: str, ctx: AuthContext) -> bool:
        """Mask grants must name the field or ``field.mask:*``; ``*`` and ``<entity>.*`` never mask."""

        prefix, _, _field = required.partition(":")
        return any(grant in {required, f"{prefix}:*"} for grant in self._grants(ctx))

    @staticmethod
    def _matches(grant: str, required: str) -> bool:
        if grant in {"*", required}:
            return True

        if grant.endswith(".*"):
            return required.startswith(grant[:-1])

        if ":" in grant and grant.endswith(":*"):
            return required.startswith(grant[:-1])

        return False


DEFAULT_ROLE_PERMISSIONS: dict[str, set[str]] = {
    "owner": {"*"},
    "accountant": {
        "ledger.*",
        "periods.*",
        "invoicing.*",
        "posting.*",
        "cash.*",
        "tax.*",
        "reports.*",
        "customers.*",
        "products.*",
        "profiles.business_profile.read",
        "profiles.business_profile.field.read:*",
        "ksef.*",
    },
    "viewer": {
        "profiles.business_profile.field.read:*",
        "customers.customer.field.read:*",
        "customers.customer.field.mask:email",
        "customers.customer.field.mask:phone",
        "invoicing.invoice.field.read:*",
        "ledger.account.field.read:*",
        "ledger.entry.field.read:*",
    },
}


_POLICY_BACKEND: PolicyBackend = InMemoryPolicyBackend(default_allow=True)
_POLICY_LOCK = Lock()


def get_policy_backend() -> PolicyBackend:
    """Get the active policy backend instance."""

    return _POLICY_BACKEND


def set_policy_backend(backend: PolicyBackend) -> None:
    """Set the active policy backend instance."""

    global _POLICY_BACKEND
    with _POLICY_LOCK:
        _POLICY_BACKEND = backend
