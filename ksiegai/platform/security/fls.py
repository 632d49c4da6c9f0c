from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ksiegai import audit
from ksiegai.metrics import observe_fls_field_counts
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import ForbiddenFieldError
from ksiegai.platform.security.policies import FieldDecision, get_policy_backend

logger = logging.getLogger("ksiegai.security")

MASKED_FIELD_VALUE = "***"

# characters left visible at the end of masked identifiers
_TAIL_VISIBLE_FIELDS = {"nip": 4, "pesel": 4, "regon": 3, "bank_account": 4, "iban": 4, "phone": 3}


@dataclass(slots=True)
class FieldReadOutcome:
    """A record after field-level read policy, with the names of masked and dropped fields."""

    record: dict[str, Any]
    masked_fields: list[str] = field(default_factory=list)
    denied_fields: list[str] = field(default_factory=list)

    @property
    def restricted(self) -> bool:
        return bool(self.masked_fields or self.denied_fields)


def mask_field_value(field_name: str, value: Any) -> Any:
    """Mask a value while keeping enough of it to be recognisable (``b***@firma.pl``, ``***0274``)."""

    if value is None:
        return None
    text = str(value)
    if field_name == "email" and "@" in text:
        local, domain = text.split("@", 1)
        return f"{local[:1]}{MASKED_FIELD_VALUE}@{domain}"
    visible = _TAIL_VISIBLE_FIELDS.get(field_name)
    if visible:
        digits = "".join(ch for ch in text if ch.isalnum())
        if len(digits) > visible:
            return f"{MASKED_FIELD_VALUE}{digits[-visible:]}"
    return MASKED_FIELD_VALUE


def evaluate_fls_read(resource: str, record: dict[str, Any], ctx: AuthContext) -> FieldReadOutcome:
    policy = get_policy_backend()
    outcome = FieldReadOutcome(record={})
    for field_name, value in record.items():
        decision = policy.evaluate_field_read(resource, field_name, ctx)
        if decision == FieldDecision.ALLOW:
            outcome.record[field_name] = value
        elif decision == FieldDecision.MASK:
            outcome.record[field_name] = mask_field_value(field_name, value)
            outcome.masked_fields.append(field_name)
        else:
            outcome.denied_fields.append(field_name)
    return outcome


def apply_fls_read(resource: str, record: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
    """Apply field-level read policy to a single record."""

    outcome = evaluate_fls_read(resource, record, ctx)
    if outcome.restricted:
        _record_restriction(resource, "read", ctx, record, outcome.masked_fields, outcome.denied_fields)
    return outcome.record


def apply_fls_read_many(resource: str, records: Iterable[dict[str, Any]], ctx: AuthContext) -> list[dict[str, Any]]:
    """Apply read policy to a list page; restrictions are audited once for the whole page."""

    outcomes = [evaluate_fls_read(resource, record, ctx) for record in records]
    restricted = [outcome for outcome in outcomes if outcome.restricted]
    if restricted:
        masked = sorted({name for outcome in restricted for name in outcome.masked_fields})
        denied = sorted({name for outcome in restricted for name in outcome.denied_fields})
        observe_fls_field_counts(
            resource=resource,
            operation="read",
            masked_count=sum(len(outcome.masked_fields) for outcome in restricted),
            denied_count=sum(len(outcome.denied_fields) for outcome in restricted),
        )
        _audit_restriction(resource, "read", ctx, "list", None, masked, denied, rows=len(restricted))
    return [outcome.record for outcome in outcomes]


def validate_fls_write(resource: str, payload: dict[str, Any], ctx: AuthContext) -> None:
    """Reject a payload that touches fields the caller may not edit."""

    policy = get_policy_backend()
    denied_fields = [field_name for field_name in payload if not policy.can_edit_field(resource, field_name, ctx)]
    if not denied_fields:
        return

    _record_restriction(resource, "write", ctx, payload, [], denied_fields)
    raise ForbiddenFieldError(resource=resource, fields=denied_fields)


def _record_restriction(
    resource: str,
    operation: str,
    ctx: AuthContext,
    record: dict[str, Any],
    masked_fields: list[str],
    denied_fields: list[str],
) -> None:
    observe_fls_field_counts(
        resource=resource,
        operation=operation,
        masked_count=len(masked_fields),
        denied_count=len(denied_fields),
    )
    profile_id = record.get("business_profile_id")
    _audit_restriction(
        resource,
        operation,
        ctx,
        str(record.get("id", "unknown")),
        str(profile_id) if profile_id is not None else None,
        masked_fields,
        denied_fields,
    )


def _audit_restriction(
    resource: str,
    operation: str,
    ctx: AuthContext,
    entity_id: str,
    business_profile_id: str | None,
    masked_fields: list[str],
    denied_fields: list[str],
    *,
    rows: int = 1,
) -> None:
    audit.record(
        actor_user_id=ctx.user_id,
        entity_type="security.fls",
        entity_id=entity_id,
        action=f"fls.{operation}",
        before=None,
        after={
            "resource": resource,
            "business_profile_id": business_profile_id,
            "role_names": ctx.roles,
            "entity_scope": ctx.entity_scope,
            "masked_fields": masked_fields,
            "denied_fields": denied_fields,
            "rows": rows,
        },
        correlation_id=ctx.correlation_id,
    )
    logger.info(
        "fls.restricted",
        extra={
            "resource": resource,
            "operation": operation,
            "masked_fields": masked_fields,
            "denied_fields": denied_fields,
        },
    )
