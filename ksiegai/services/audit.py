from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.orm import Session

from ksiegai.context import get_correlation_id
from ksiegai.models.audit import AuditEvent
from ksiegai.otel import current_trace_id


def write_audit_event(
    db: Session,
    *,
    actor_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    business_profile_id: uuid.UUID | None = None,
    metadata: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> AuditEvent:
    """Add an audit event to the session and flush it so callers can reference its id.

    Committing is left to the caller so the event lands in the same transaction
    as the mutation it describes.
    """

    event = AuditEvent(
        business_profile_id=business_profile_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        event_metadata=metadata or {},
        correlation_id=correlation_id or get_correlation_id(),
        trace_id=current_trace_id(),
    )
    db.add(event)
    db.flush()
    return event
