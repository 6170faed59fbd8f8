"""
backend/app/services/event_models.py

Purpose:
    Notification event contracts published by the subscription and betslip
    services. ID-first payloads; subscribers look up anything else they need.

Dependencies:
    - pydantic
    - app.utils
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.utils import ensure_utc, utcnow

EventType = Literal[
    "subscription.approved",
    "subscription.rejected",
    "subscription.expired",
    "betslip.settled",
]


def make_event_id() -> str:
    return str(uuid.uuid4())


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=make_event_id)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    source: str


class SubscriptionApprovedEvent(BaseEvent):
    event_type: Literal["subscription.approved"] = "subscription.approved"
    subscription_id: str
    user_id: str
    start_at: datetime
    end_at: datetime
    expired_conflicts: list[str] = Field(default_factory=list)


class SubscriptionRejectedEvent(BaseEvent):
    event_type: Literal["subscription.rejected"] = "subscription.rejected"
    subscription_id: str
    user_id: str
    reason: str


class SubscriptionExpiredEvent(BaseEvent):
    event_type: Literal["subscription.expired"] = "subscription.expired"
    subscription_id: str
    user_id: str
    reason: str = ""


class BetslipSettledEvent(BaseEvent):
    event_type: Literal["betslip.settled"] = "betslip.settled"
    betslip_id: str
    outcome: str
    profit_units: float
    settled_by: str


def normalize_event_time(event: BaseEvent) -> BaseEvent:
    event.occurred_at = ensure_utc(event.occurred_at)
    return event
