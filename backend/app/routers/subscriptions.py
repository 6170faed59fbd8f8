"""Subscriber-facing subscription API: payment submission, own subscriptions and tier-scoped stats."""

from fastapi import APIRouter, Depends, status

from app.models.subscription import SubmitPaymentRequest
from app.models.user import Actor
from app.services.auth_service import get_current_user
from app.services.betslip_service import betslip_stats
from app.services.entitlement_service import get_subscription_access
from app.services.subscription_service import get_user_subscriptions, submit_payment

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.post("/payment", status_code=status.HTTP_201_CREATED)
async def post_payment(body: SubmitPaymentRequest, user=Depends(get_current_user)):
    """Submit a payment receipt; creates the pending subscription when needed."""
    return await submit_payment(
        Actor.from_user(user),
        amount_cents=body.amount_cents,
        method_id=body.method_id,
        reference=body.reference,
        receipt_url=body.receipt_url,
        package_id=body.package_id,
        subscription_id=body.subscription_id,
    )


@router.get("/me")
async def my_subscriptions(user=Depends(get_current_user)):
    user_id = str(user["_id"])
    return {
        "access": await get_subscription_access(user_id),
        "subscriptions": await get_user_subscriptions(user_id),
    }


@router.get("/stats")
async def my_stats(user=Depends(get_current_user)):
    """P&L over the betslips the caller's current tier can see."""
    access = await get_subscription_access(str(user["_id"]))
    return {
        "access": access,
        "stats": await betslip_stats(access["subscription_tier"]),
    }
