from collections.abc import Callable
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any


@dataclass(frozen=True)
class DomainEvent:
    """Envelope delivered to in-process subscribers (``invoice.issued``, ``period.locked``...)."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def business_profile_id(self) -> str | None:
        value = self.payload.get("business_profile_id")
        return str(value) if value is not None else None

    @property
    def correlation_id(self) -> str | None:
        return self.payload.get("correlation_id")

    @property
    def domain(self) -> str:
        return self.name.split(".", 1)[0]


EventHandler = Callable[[DomainEvent], None]


class InProcessEventBus:
    """Synchronous bus. Subscriptions are glob patterns: ``invoice.*`` or ``*``."""

    def __init__(self) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        if (pattern, handler) not in self._subscriptions:
            self._subscriptions.append((pattern, handler))

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        self._subscriptions = [item for item in self._subscriptions if item != (pattern, handler)]

    def handlers_for(self, event_name: str) -> list[EventHandler]:
        return [handler for pattern, handler in self._subscriptions if fnmatchcase(event_name, pattern)]

    def publish(self, event_name: str, payload: dict[str, Any]) -> DomainEvent:
        event = DomainEvent(name=event_name, payload=payload)
        for handler in self.handlers_for(event_name):
            handler(event)
        return event

    def clear(self) -> None:
        self._subscriptions.clear()


event_bus = InProcessEventBus()
