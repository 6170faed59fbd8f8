"""
backend/app/services/event_handlers/__init__.py

Purpose:
    Central registration entrypoint for event bus subscribers.

Dependencies:
    - app.services.event_bus
    - app.services.event_handlers.notification_handlers
"""

from __future__ import annotations

from app.config import settings
from app.services.event_bus import InMemoryEventBus
from app.services.event_handlers.notification_handlers import (
    handle_betslip_settled,
    handle_subscription_approved,
    handle_subscription_expired,
    handle_subscription_rejected,
)


def register_event_handlers(bus: InMemoryEventBus) -> None:
    if not settings.EVENT_HANDLER_NOTIFICATIONS_ENABLED:
        return
    bus.subscribe("subscription.approved", handle_subscription_approved, handler_name="notify_approved", concurrency=1)
    bus.subscribe("subscription.rejected", handle_subscription_rejected, handler_name="notify_rejected", concurrency=1)
    bus.subscribe("subscription.expired", handle_subscription_expired, handler_name="notify_expired", concurrency=1)
    bus.subscribe("betslip.settled", handle_betslip_settled, handler_name="notify_settled", concurrency=1)
