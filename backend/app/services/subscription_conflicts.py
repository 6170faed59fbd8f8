"""
backend/app/services/subscription_conflicts.py

Purpose:
    Detect and resolve overlapping active subscriptions for a user when a new
    subscription is approved. Detection is read-only; resolution auto-expires
    every conflicting row and appends one audit event per expiry.

Dependencies:
    - app.database
    - app.services.audit_service
    - app.services.event_bus
"""

from __future__ import annotations

import logging
from datetime import datetime

from bson import ObjectId
from pymongo import ReturnDocument

import app.database as _db
from app.models.subscription import SubscriptionEventAction, SubscriptionStatus
from app.models.user import Actor
from app.services.audit_service import append_subscription_event
from app.services.errors import InternalError
from app.services.event_bus import event_bus
from app.services.event_models import SubscriptionExpiredEvent
from app.utils import ensure_utc, utcnow

logger = logging.getLogger("vipslips.subscription_conflicts")

AUTO_EXPIRE_NOTE = "Auto-expired due to new subscription approval"


def intervals_overlap(
    existing_start: datetime,
    existing_end: datetime,
    proposed_start: datetime,
    proposed_end: datetime,
) -> bool:
    """Closed-interval overlap: touching endpoints count as overlapping."""
    return (
        ensure_utc(existing_start) <= ensure_utc(proposed_end)
        and ensure_utc(existing_end) >= ensure_utc(proposed_start)
    )


async def find_conflicts(
    user_id: str,
    proposed_start: datetime,
    proposed_end: datetime,
    exclude_subscription_id: str | None = None,
) -> list[dict]:
    """Active subscriptions of user_id whose window overlaps the proposed one."""
    query: dict = {
        "user_id": user_id,
        "status": SubscriptionStatus.active.value,
    }
    if exclude_subscription_id:
        query["_id"] = {"$ne": ObjectId(exclude_subscription_id)}

    candidates = await _db.db.subscriptions.find(
        query, {"user_id": 1, "start_at": 1, "end_at": 1, "status": 1},
    ).to_list(length=500)

    conflicts = []
    for sub in candidates:
        start_at, end_at = sub.get("start_at"), sub.get("end_at")
        if start_at is None or end_at is None:
            logger.warning("Active subscription %s has no window; skipped", sub["_id"])
            continue
        if intervals_overlap(start_at, end_at, proposed_start, proposed_end):
            conflicts.append(sub)
    return conflicts


async def resolve_conflicts(conflicts: list[dict], actor: Actor) -> list[str]:
    """Expire each conflicting subscription. Returns the ids actually expired.

    Rows that stopped being active in the meantime are skipped. A storage
    failure aborts the run with InternalError; ids expired before the
    failure are logged for reconciliation.
    """
    expired_ids: list[str] = []
    for sub in conflicts:
        sub_id = str(sub["_id"])
        now = utcnow()
        try:
            updated = await _db.db.subscriptions.find_one_and_update(
                {"_id": sub["_id"], "status": SubscriptionStatus.active.value},
                {"$set": {
                    "status": SubscriptionStatus.expired.value,
                    "updated_by": actor.id,
                    "updated_at": now,
                }},
                return_document=ReturnDocument.AFTER,
            )
        except Exception as exc:
            logger.error(
                "Conflict expiry failed at subscription=%s; already expired=%s",
                sub_id, expired_ids, exc_info=True,
            )
            raise InternalError(
                "Approval did not complete: failed to expire a conflicting subscription."
            ) from exc

        if updated is None:
            logger.info("Conflicting subscription %s no longer active; skipped", sub_id)
            continue

        expired_ids.append(sub_id)
        await append_subscription_event(
            subscription_id=sub_id,
            actor_id=actor.id,
            action=SubscriptionEventAction.expired.value,
            notes=AUTO_EXPIRE_NOTE,
        )
        event_bus.publish(SubscriptionExpiredEvent(
            source="subscription_conflicts",
            subscription_id=sub_id,
            user_id=str(updated.get("user_id", "")),
            reason=AUTO_EXPIRE_NOTE,
        ))

    if expired_ids:
        logger.info("Auto-expired %d conflicting subscription(s): %s", len(expired_ids), expired_ids)
    return expired_ids
