from __future__ import annotations

from collections.abc import Generator

import pytest

from ksiegai import events
from ksiegai.context import reset_correlation_id, set_correlation_id
from ksiegai.core.events import DomainEvent, InProcessEventBus, event_bus


@pytest.fixture(autouse=True)
def clean_bus() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


def test_pattern_subscriptions_receive_matching_events() -> None:
    bus = InProcessEventBus()
    invoices: list[str] = []
    everything: list[str] = []

    def on_invoice(event: DomainEvent) -> None:
        invoices.append(event.name)

    bus.subscribe("invoice.*", on_invoice)
    bus.subscribe("invoice.*", on_invoice)
    bus.subscribe("*", lambda event: everything.append(event.name))

    event = bus.publish("invoice.issued", {"business_profile_id": 7, "correlation_id": "corr-1"})
    bus.publish("period.locked", {})

    assert invoices == ["invoice.issued"]
    assert everything == ["invoice.issued", "period.locked"]
    assert event.business_profile_id == "7"
    assert event.correlation_id == "corr-1"
    assert event.domain == "invoice"

    bus.unsubscribe("invoice.*", on_invoice)
    bus.publish("invoice.paid", {})
    assert invoices == ["invoice.issued"]


def test_handler_errors_propagate() -> None:
    bus = InProcessEventBus()

    def failing(_event: DomainEvent) -> None:
        raise RuntimeError("handler failed")

    bus.subscribe("ledger.entry.*", failing)
    with pytest.raises(RuntimeError):
        bus.publish("ledger.entry.posted", {})


def test_publish_stamps_correlation_id_and_dispatches() -> None:
    received: list[DomainEvent] = []

    def handler(event: DomainEvent) -> None:
        received.append(event)

    event_bus.subscribe("cash.document.created", handler)
    token = set_correlation_id("corr-42")
    try:
        events.publish({"event_type": "cash.document.created", "business_profile_id": "p-1"})
        events.publish({"event_type": "cash.document.created", "correlation_id": "explicit"})
    finally:
        reset_correlation_id(token)
        event_bus.unsubscribe("cash.document.created", handler)

    assert [item["correlation_id"] for item in events.published_events] == ["corr-42", "explicit"]
    assert [item.correlation_id for item in received] == ["corr-42", "explicit"]
    assert received[0].business_profile_id == "p-1"


def test_envelopes_are_stamped_and_require_event_type() -> None:
    events.publish({"event_type": "invoice.paid", "event_id": "fixed"})
    events.publish({"event_type": "invoice.paid"})

    first, second = events.published_events
    assert first["event_id"] == "fixed"
    assert second["event_id"] != "fixed"
    assert second["occurred_at"].endswith("+00:00")

    with pytest.raises(ValueError):
        events.publish({"business_profile_id": "p-1"})
