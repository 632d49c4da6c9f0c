from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from ksiegai.context import get_correlation_id
from ksiegai.core.events import event_bus

published_events: list[dict[str, Any]] = []


def publish(envelope: dict[str, Any]) -> None:
    """Stamp a domain event envelope and hand it to in-process subscribers.

    Every envelope gets an ``event_id``, an ``occurred_at`` timestamp and the
    request correlation id unless the caller supplied them.
    """
    event_type = envelope.get("event_type")
    if not isinstance(event_type, str) or not event_type:
        raise ValueError("event envelope requires a non-empty event_type")

    envelope.setdefault("event_id", str(uuid.uuid4()))
    envelope.setdefault("occurred_at", datetime.now(timezone.utc).isoformat())
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_bus.publish(event_type, envelope)
