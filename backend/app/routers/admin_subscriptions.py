"""Admin subscription lifecycle API: approve, reject, expire and the end-date sweep."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.models.subscription import (
    ApproveSubscriptionRequest,
    ExpireSubscriptionRequest,
    LifecycleResult,
    RejectSubscriptionRequest,
    SweepResult,
)
from app.models.user import Actor
from app.services.auth_service import get_admin_user
from app.services.audit_service import log_audit
from app.services.subscription_service import (
    approve_subscription,
    expire_ended_subscriptions,
    expire_subscription,
    get_subscription_detail,
    list_expiring_subscriptions,
    reject_subscription,
)

logger = logging.getLogger("vipslips.admin_subscriptions")
router = APIRouter(prefix="/api/admin/subscriptions", tags=["admin-subscriptions"])


@router.post("/approve", response_model=LifecycleResult)
async def approve(body: ApproveSubscriptionRequest, admin=Depends(get_admin_user)):
    return await approve_subscription(
        body.subscription_id, body.start_at, body.end_at, Actor.from_user(admin),
    )


@router.post("/reject", response_model=LifecycleResult)
async def reject(body: RejectSubscriptionRequest, admin=Depends(get_admin_user)):
    return await reject_subscription(body.subscription_id, body.reason, Actor.from_user(admin))


@router.post("/expire", response_model=LifecycleResult)
async def expire(body: ExpireSubscriptionRequest, admin=Depends(get_admin_user)):
    return await expire_subscription(body.subscription_id, Actor.from_user(admin), reason=body.reason)


@router.post("/expire-ended", response_model=SweepResult)
async def expire_ended(admin=Depends(get_admin_user)):
    """Run the end-date sweep on demand."""
    count = await expire_ended_subscriptions()
    await log_audit(
        actor_id=str(admin["_id"]),
        target_id="sweep",
        action="SUBSCRIPTION_SWEEP",
        metadata={"expired_count": count},
    )
    return SweepResult(
        success=True,
        message=f"Expired {count} subscription(s)",
        expired_count=count,
    )


@router.get("/expiring")
async def expiring(
    days: Optional[int] = Query(None, ge=1, le=90),
    admin=Depends(get_admin_user),
):
    items = await list_expiring_subscriptions(days)
    return {"items": items, "count": len(items)}


@router.get("/{subscription_id}")
async def detail(subscription_id: str, admin=Depends(get_admin_user)):
    return await get_subscription_detail(subscription_id)
