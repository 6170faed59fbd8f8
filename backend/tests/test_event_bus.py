"""
backend/tests/test_event_bus.py

Purpose:
    Unit tests for the in-memory event bus and notification handler wiring.
"""

from __future__ import annotations

import asyncio

import pytest

from app.services.event_bus import InMemoryEventBus
from app.services.event_handlers import register_event_handlers
from app.services.event_models import BetslipSettledEvent, SubscriptionRejectedEvent


def _settled(betslip_id: str = "b1") -> BetslipSettledEvent:
    return BetslipSettledEvent(
        source="test",
        betslip_id=betslip_id,
        outcome="won",
        profit_units=15.0,
        settled_by="admin-1",
    )


@pytest.mark.asyncio
async def test_event_bus_fanout() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    seen: list[tuple[str, str]] = []

    async def handler_a(event):
        seen.append(("a", event.betslip_id))

    async def handler_b(event):
        seen.append(("b", event.betslip_id))

    bus.subscribe("betslip.settled", handler_a, handler_name="a", concurrency=1)
    bus.subscribe("betslip.settled", handler_b, handler_name="b", concurrency=1)
    await bus.start()

    assert bus.publish(_settled("b1")) is True
    await asyncio.sleep(0.05)
    await bus.stop()

    assert ("a", "b1") in seen
    assert ("b", "b1") in seen
    stats = bus.stats()
    assert stats["published_total"] == 1
    assert stats["handled_total"] == 2
    assert stats["failed_total"] == 0
    assert stats["per_event_type"]["betslip.settled"] == 1


@pytest.mark.asyncio
async def test_event_bus_handler_failure_isolated() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    success_calls = 0

    async def failing(_event):
        raise RuntimeError("boom")

    async def success(_event):
        nonlocal success_calls
        success_calls += 1

    bus.subscribe("betslip.settled", failing, handler_name="failing", concurrency=1)
    bus.subscribe("betslip.settled", success, handler_name="success", concurrency=1)
    await bus.start()
    bus.publish(_settled())
    await asyncio.sleep(0.05)
    await bus.stop()

    stats = bus.stats()
    assert success_calls == 1
    assert stats["failed_total"] == 1
    assert stats["recent_errors"][0]["handler_name"] == "failing"
    assert stats["recent_errors"][0]["error"] == "boom"


@pytest.mark.asyncio
async def test_event_bus_overflow_drops_without_raising() -> None:
    bus = InMemoryEventBus(ingress_maxsize=1, handler_maxsize=1, default_concurrency=1, error_buffer_size=10)
    assert bus.publish(_settled("b1")) is True
    assert bus.publish(_settled("b2")) is False

    stats = bus.stats()
    assert stats["published_total"] == 1
    assert stats["dropped_total"] == 1


def test_disabled_bus_ignores_events() -> None:
    bus = InMemoryEventBus(
        ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10, enabled=False,
    )
    assert bus.publish(_settled()) is False
    assert bus.stats()["published_total"] == 0


@pytest.mark.asyncio
async def test_notification_handlers_registered_and_run() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    register_event_handlers(bus)
    await bus.start()
    bus.publish(SubscriptionRejectedEvent(
        source="test", subscription_id="s1", user_id="u1", reason="Receipt unreadable",
    ))
    await asyncio.sleep(0.05)
    await bus.stop()

    stats = bus.stats()
    assert "subscription.rejected:notify_rejected" in stats["per_handler"]
    assert stats["per_handler"]["subscription.rejected:notify_rejected"]["handled_total"] == 1
    assert stats["failed_total"] == 0
