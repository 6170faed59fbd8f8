"""
backend/app/services/event_handlers/notification_handlers.py

Purpose:
    Notification subscribers for lifecycle and settlement events. Delivery
    (email, WhatsApp) happens outside this service; these handlers record
    the intended notification and never feed errors back to publishers.

Dependencies:
    - app.services.event_models
"""

from __future__ import annotations

import logging

from app.services.event_models import (
    BaseEvent,
    BetslipSettledEvent,
    SubscriptionApprovedEvent,
    SubscriptionExpiredEvent,
    SubscriptionRejectedEvent,
)

logger = logging.getLogger("vipslips.notifications")


async def handle_subscription_approved(event: BaseEvent) -> None:
    if not isinstance(event, SubscriptionApprovedEvent):
        return
    logger.info(
        "notify user=%s subscription=%s approved window=%s..%s",
        event.user_id, event.subscription_id,
        event.start_at.isoformat(), event.end_at.isoformat(),
    )


async def handle_subscription_rejected(event: BaseEvent) -> None:
    if not isinstance(event, SubscriptionRejectedEvent):
        return
    logger.info(
        "notify user=%s subscription=%s rejected reason=%r",
        event.user_id, event.subscription_id, event.reason,
    )


async def handle_subscription_expired(event: BaseEvent) -> None:
    if not isinstance(event, SubscriptionExpiredEvent):
        return
    logger.info(
        "notify user=%s subscription=%s expired reason=%r",
        event.user_id, event.subscription_id, event.reason,
    )


async def handle_betslip_settled(event: BaseEvent) -> None:
    if not isinstance(event, BetslipSettledEvent):
        return
    logger.info(
        "notify subscribers betslip=%s settled outcome=%s profit_units=%.2f by=%s",
        event.betslip_id, event.outcome, event.profit_units, event.settled_by,
    )
