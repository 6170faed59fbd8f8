"""Tier entitlement: which betslips a subscriber may see."""

import logging
from datetime import datetime
from typing import Optional, TypeVar

import app.database as _db
from app.models.package import TIER_RANK
from app.models.subscription import SubscriptionStatus
from app.utils import as_utc, to_object_id, utcnow

logger = logging.getLogger("vipslips.entitlement")

T = TypeVar("T", bound=dict)


def can_access_tier(user_tier: Optional[str], required_tier: str) -> bool:
    """A tier can see its own content and everything ranked below it."""
    if not user_tier or user_tier not in TIER_RANK:
        return False
    return TIER_RANK[user_tier] >= TIER_RANK.get(required_tier, max(TIER_RANK.values()) + 1)


def filter_betslips_by_tier(betslips: list[T], user_tier: Optional[str]) -> list[T]:
    if not user_tier:
        return []
    return [b for b in betslips if can_access_tier(user_tier, b.get("min_tier", "monthly"))]


async def get_subscription_access(user_id: str, now: Optional[datetime] = None) -> dict:
    """Active, unexpired subscription tier for a user.

    Returns {has_active_subscription, subscription_tier, expires_at}.
    """
    now = now or utcnow()
    sub = await _db.db.subscriptions.find_one(
        {
            "user_id": user_id,
            "status": SubscriptionStatus.active.value,
            "end_at": {"$gt": now},
        },
        sort=[("end_at", -1)],
    )
    if not sub:
        return {"has_active_subscription": False, "subscription_tier": None, "expires_at": None}

    package_oid = to_object_id(sub.get("package_id"))
    package = await _db.db.packages.find_one({"_id": package_oid}, {"tier": 1}) if package_oid else None
    if not package:
        logger.warning("Active subscription %s references missing package %s", sub["_id"], sub.get("package_id"))
    return {
        "has_active_subscription": True,
        "subscription_tier": package.get("tier") if package else None,
        "expires_at": as_utc(sub.get("end_at")),
    }
