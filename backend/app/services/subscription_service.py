"""
backend/app/services/subscription_service.py

Purpose:
    Subscription lifecycle orchestration: payment submission, approve,
    reject, manual expiry and the end-date sweep. Every status change is
    checked against subscription_rules first and applied as a guarded
    update on the expected current status.

Dependencies:
    - app.database
    - app.services.subscription_rules
    - app.services.subscription_conflicts
    - app.services.audit_service
    - app.services.event_bus
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Optional

from pymongo import ReturnDocument

from app.config import settings
import app.database as _db
from app.models.subscription import (
    LifecycleResult,
    SubscriptionEventAction,
    SubscriptionResponse,
    SubscriptionStatus,
)
from app.models.user import Actor
from app.services.audit_service import append_subscription_event, log_audit
from app.services.errors import (
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.services.event_bus import event_bus
from app.services.event_models import (
    SubscriptionApprovedEvent,
    SubscriptionExpiredEvent,
    SubscriptionRejectedEvent,
)
from app.services.subscription_conflicts import find_conflicts, resolve_conflicts
from app.services.subscription_rules import (
    append_note,
    is_valid_transition,
    subscription_time_info,
)
from app.utils import as_utc, ensure_utc, to_object_id, utcnow

logger = logging.getLogger("vipslips.subscription_service")

DEFAULT_EXPIRE_NOTE = "Manually expired by admin"
SWEEP_EXPIRE_NOTE = "Automatically expired due to end date reached"
_REFERENCE_PATTERN = re.compile(r"^[a-zA-Z0-9\-_\s.@]+$")


async def _load_subscription(subscription_id: str) -> dict:
    oid = to_object_id(subscription_id)
    if oid is None:
        raise NotFoundError("Subscription not found")
    try:
        sub = await _db.db.subscriptions.find_one({"_id": oid})
    except Exception as exc:
        logger.exception("Failed to load subscription %s", subscription_id)
        raise InternalError("Failed to load subscription") from exc
    if not sub:
        raise NotFoundError("Subscription not found")
    return sub


async def _apply_transition(
    sub: dict,
    target: SubscriptionStatus,
    update: dict,
    actor: Actor,
    failure_message: str,
) -> dict:
    """Write a status change guarded on the status we validated against."""
    try:
        updated = await _db.db.subscriptions.find_one_and_update(
            {"_id": sub["_id"], "status": sub["status"]},
            {"$set": {
                **update,
                "status": target.value,
                "updated_by": actor.id,
                "updated_at": utcnow(),
            }},
            return_document=ReturnDocument.AFTER,
        )
    except Exception as exc:
        logger.exception("Failed to update subscription %s to %s", sub["_id"], target.value)
        raise InternalError(failure_message) from exc
    if updated is None:
        raise InvalidTransitionError("Subscription was modified concurrently; reload and retry")
    return updated


# ---------- Approve ----------

async def approve_subscription(
    subscription_id: str,
    start_at: datetime,
    end_at: datetime,
    actor: Actor,
) -> LifecycleResult:
    """Activate a pending subscription for [start_at, end_at].

    Overlapping active subscriptions of the same user are expired first;
    activation is the last write.
    """
    if start_at is None or end_at is None:
        raise ValidationError("Start and end dates are required")
    start_at, end_at = ensure_utc(start_at), ensure_utc(end_at)
    if end_at <= start_at:
        raise ValidationError("End date must be after start date")

    sub = await _load_subscription(subscription_id)
    if not is_valid_transition(sub["status"], SubscriptionStatus.active):
        raise InvalidTransitionError("Cannot approve subscription with current status")

    try:
        conflicts = await find_conflicts(sub["user_id"], start_at, end_at, str(sub["_id"]))
    except Exception as exc:
        logger.exception("Conflict lookup failed for subscription %s", subscription_id)
        raise InternalError("Approval did not complete: conflict check failed.") from exc

    expired_ids = await resolve_conflicts(conflicts, actor)

    try:
        await _apply_transition(
            sub,
            SubscriptionStatus.active,
            {"start_at": start_at, "end_at": end_at},
            actor,
            "Approval did not complete: failed to activate subscription.",
        )
    except InvalidTransitionError:
        if expired_ids:
            logger.error(
                "Subscription %s changed before activation; conflicts already expired=%s",
                subscription_id, expired_ids,
            )
            raise InternalError("Approval did not complete: subscription changed during approval.")
        raise
    except InternalError:
        if expired_ids:
            logger.error(
                "Activation of %s failed after expiring conflicts=%s; manual reconciliation needed",
                subscription_id, expired_ids,
            )
        raise

    notes = f"Approved by admin ({actor.label}), active from {start_at.isoformat()} to {end_at.isoformat()}"
    await append_subscription_event(
        subscription_id=subscription_id,
        actor_id=actor.id,
        action=SubscriptionEventAction.approved.value,
        notes=notes,
    )
    await log_audit(
        actor_id=actor.id,
        target_id=subscription_id,
        action="SUBSCRIPTION_APPROVE",
        metadata={
            "start_at": start_at.isoformat(),
            "end_at": end_at.isoformat(),
            "expired_conflicts": expired_ids,
        },
    )
    event_bus.publish(SubscriptionApprovedEvent(
        source="subscription_service",
        subscription_id=subscription_id,
        user_id=sub["user_id"],
        start_at=start_at,
        end_at=end_at,
        expired_conflicts=expired_ids,
    ))

    logger.info(
        "Subscription approved: id=%s user=%s by=%s conflicts_expired=%d",
        subscription_id, sub["user_id"], actor.id, len(expired_ids),
    )
    return LifecycleResult(success=True, message="Subscription approved successfully")


# ---------- Reject ----------

async def reject_subscription(subscription_id: str, reason: str, actor: Actor) -> LifecycleResult:
    reason = (reason or "").strip()
    if len(reason) < settings.REJECT_REASON_MIN_LENGTH:
        raise ValidationError(
            f"Rejection reason must be at least {settings.REJECT_REASON_MIN_LENGTH} characters"
        )

    sub = await _load_subscription(subscription_id)
    if not is_valid_transition(sub["status"], SubscriptionStatus.rejected):
        raise InvalidTransitionError("Cannot reject subscription with current status")

    await _apply_transition(
        sub,
        SubscriptionStatus.rejected,
        {"notes": append_note(sub.get("notes"), "REJECTED", reason)},
        actor,
        "Failed to reject subscription",
    )

    await append_subscription_event(
        subscription_id=subscription_id,
        actor_id=actor.id,
        action=SubscriptionEventAction.rejected.value,
        notes=reason,
    )
    await log_audit(
        actor_id=actor.id,
        target_id=subscription_id,
        action="SUBSCRIPTION_REJECT",
        metadata={"reason": reason},
    )
    event_bus.publish(SubscriptionRejectedEvent(
        source="subscription_service",
        subscription_id=subscription_id,
        user_id=sub["user_id"],
        reason=reason,
    ))

    logger.info("Subscription rejected: id=%s by=%s", subscription_id, actor.id)
    return LifecycleResult(success=True, message="Subscription rejected successfully")


# ---------- Manual expiry ----------

async def expire_subscription(
    subscription_id: str,
    actor: Actor,
    reason: Optional[str] = None,
) -> LifecycleResult:
    reason = (reason or "").strip()

    sub = await _load_subscription(subscription_id)
    if not is_valid_transition(sub["status"], SubscriptionStatus.expired):
        raise InvalidTransitionError("Cannot expire subscription with current status")

    update: dict = {}
    if reason:
        update["notes"] = append_note(sub.get("notes"), "MANUALLY EXPIRED", reason)

    await _apply_transition(
        sub,
        SubscriptionStatus.expired,
        update,
        actor,
        "Failed to expire subscription",
    )

    event_note = reason or DEFAULT_EXPIRE_NOTE
    await append_subscription_event(
        subscription_id=subscription_id,
        actor_id=actor.id,
        action=SubscriptionEventAction.expired.value,
        notes=event_note,
    )
    await log_audit(
        actor_id=actor.id,
        target_id=subscription_id,
        action="SUBSCRIPTION_EXPIRE",
        metadata={"reason": event_note},
    )
    event_bus.publish(SubscriptionExpiredEvent(
        source="subscription_service",
        subscription_id=subscription_id,
        user_id=sub["user_id"],
        reason=event_note,
    ))

    logger.info("Subscription expired manually: id=%s by=%s", subscription_id, actor.id)
    return LifecycleResult(success=True, message="Subscription expired successfully")


# ---------- End-date sweep ----------

async def expire_ended_subscriptions(now: Optional[datetime] = None) -> int:
    """Expire every active subscription whose end_at has passed. Returns the count.

    Idempotent: rows are only touched while still active with a past end_at.
    A failing row is logged and skipped; the rest are still processed.
    """
    now = now or utcnow()
    actor = Actor.system()

    try:
        cursor = _db.db.subscriptions.find(
            {
                "status": SubscriptionStatus.active.value,
                "end_at": {"$ne": None, "$lt": now},
            },
            {"user_id": 1, "end_at": 1},
        )
    except Exception as exc:
        logger.exception("End-date sweep could not load active subscriptions")
        raise InternalError("Failed to load ended subscriptions") from exc

    expired_count = 0
    async for sub in cursor:
        sub_id = str(sub["_id"])
        try:
            updated = await _db.db.subscriptions.find_one_and_update(
                {
                    "_id": sub["_id"],
                    "status": SubscriptionStatus.active.value,
                    "end_at": {"$lt": now},
                },
                {"$set": {
                    "status": SubscriptionStatus.expired.value,
                    "updated_by": actor.id,
                    "updated_at": now,
                }},
                return_document=ReturnDocument.AFTER,
            )
        except Exception:
            logger.exception("End-date sweep failed for subscription %s", sub_id)
            continue

        if updated is None:
            continue

        expired_count += 1
        await append_subscription_event(
            subscription_id=sub_id,
            actor_id=actor.id,
            action=SubscriptionEventAction.expired.value,
            notes=SWEEP_EXPIRE_NOTE,
        )
        event_bus.publish(SubscriptionExpiredEvent(
            source="subscription_sweep",
            subscription_id=sub_id,
            user_id=str(sub.get("user_id", "")),
            reason=SWEEP_EXPIRE_NOTE,
        ))

    if expired_count:
        logger.info("End-date sweep expired %d subscription(s)", expired_count)
    else:
        logger.debug("End-date sweep: nothing to expire")
    return expired_count


# ---------- Payment submission ----------

def validate_payment_reference(reference: str) -> str:
    reference = (reference or "").strip()
    if not reference:
        raise ValidationError("Payment reference is required")
    if len(reference) < 5:
        raise ValidationError("Payment reference must be at least 5 characters")
    if len(reference) > 100:
        raise ValidationError("Payment reference must be less than 100 characters")
    if not _REFERENCE_PATTERN.match(reference):
        raise ValidationError("Payment reference contains invalid characters")
    return reference


async def _get_or_create_pending(user_id: str, package_id: Optional[str]) -> str:
    existing = await _db.db.subscriptions.find_one(
        {"user_id": user_id, "status": SubscriptionStatus.pending.value},
        {"_id": 1},
    )
    if existing:
        return str(existing["_id"])

    if not package_id:
        raise ValidationError("Package ID is required for new subscriptions")
    package_oid = to_object_id(package_id)
    package = await _db.db.packages.find_one({"_id": package_oid, "is_active": True}) if package_oid else None
    if not package:
        raise NotFoundError("Package not found")

    now = utcnow()
    doc = {
        "user_id": user_id,
        "package_id": package_id,
        "status": SubscriptionStatus.pending.value,
        "start_at": None,
        "end_at": None,
        "notes": "Subscription created via payment submission",
        "created_by": user_id,
        "updated_by": user_id,
        "created_at": now,
        "updated_at": now,
    }
    result = await _db.db.subscriptions.insert_one(doc)
    subscription_id = str(result.inserted_id)
    await append_subscription_event(
        subscription_id=subscription_id,
        actor_id=user_id,
        action=SubscriptionEventAction.created.value,
        notes="Subscription created via API",
    )
    logger.info("Pending subscription created: id=%s user=%s package=%s", subscription_id, user_id, package_id)
    return subscription_id


async def submit_payment(
    actor: Actor,
    *,
    amount_cents: int,
    method_id: str,
    reference: str,
    receipt_url: str,
    package_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
) -> dict:
    """Record a payment receipt against the user's pending subscription."""
    if not amount_cents or amount_cents <= 0:
        raise ValidationError("Valid amount is required")
    if not method_id:
        raise ValidationError("Payment method is required")
    reference = validate_payment_reference(reference)
    if not (receipt_url or "").strip():
        raise ValidationError("Receipt file is required")

    method_oid = to_object_id(method_id)
    method = await _db.db.payment_methods.find_one({"_id": method_oid, "is_active": True}) if method_oid else None
    if not method:
        raise ValidationError("Invalid or inactive payment method")

    if not subscription_id:
        subscription_id = await _get_or_create_pending(actor.id, package_id)

    sub = await _load_subscription(subscription_id)
    if sub["user_id"] != actor.id:
        raise NotFoundError("Subscription not found")
    if sub["status"] != SubscriptionStatus.pending.value:
        raise InvalidTransitionError("Can only add receipts to pending subscriptions")

    fields = sorted(method.get("fields", []), key=lambda f: f.get("sort_index", 0))
    receipt = {
        "subscription_id": subscription_id,
        "method_id": method_id,
        "method": method.get("type"),
        "amount_cents": int(amount_cents),
        "reference": reference,
        "receipt_url": receipt_url.strip(),
        "receipt_context": {
            "method_type": method.get("type"),
            "method_label": method.get("label"),
            "fields": {f["key"]: f.get("value") for f in fields if "key" in f},
        },
        "submitted_at": utcnow(),
        "verified_by": None,
        "verified_at": None,
    }
    result = await _db.db.payment_receipts.insert_one(receipt)
    receipt["_id"] = result.inserted_id

    await append_subscription_event(
        subscription_id=subscription_id,
        actor_id=actor.id,
        action=SubscriptionEventAction.submitted_payment.value,
        notes=f"Payment submitted: {reference} ({amount_cents} cents via {method.get('label') or method.get('type')})",
    )
    logger.info(
        "Payment submitted: subscription=%s user=%s amount_cents=%d",
        subscription_id, actor.id, amount_cents,
    )
    return {
        "success": True,
        "message": "Payment submitted successfully",
        "subscription_id": subscription_id,
        "receipt_id": str(receipt["_id"]),
    }


# ---------- Reads ----------

def subscription_to_response(sub: dict, **extra) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=str(sub["_id"]),
        user_id=sub["user_id"],
        package_id=str(sub["package_id"]),
        status=sub["status"],
        start_at=as_utc(sub.get("start_at")),
        end_at=as_utc(sub.get("end_at")),
        notes=sub.get("notes"),
        created_at=as_utc(sub.get("created_at")),
        updated_at=as_utc(sub.get("updated_at")),
        time_info=subscription_time_info(sub["status"], sub.get("end_at")),
        **extra,
    )


def _strip_id(doc: dict) -> dict:
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


async def get_subscription_detail(subscription_id: str) -> SubscriptionResponse:
    sub = await _load_subscription(subscription_id)
    package_oid = to_object_id(sub.get("package_id"))
    package = await _db.db.packages.find_one({"_id": package_oid}) if package_oid else None
    receipts = await _db.db.payment_receipts.find(
        {"subscription_id": subscription_id},
    ).sort("submitted_at", -1).to_list(length=100)
    events = await _db.db.subscription_events.find(
        {"subscription_id": subscription_id},
    ).sort("created_at", 1).to_list(length=500)
    return subscription_to_response(
        sub,
        package=_strip_id(package) if package else None,
        payment_receipts=[_strip_id(r) for r in receipts],
        events=[_strip_id(e) for e in events],
    )


async def get_user_subscriptions(user_id: str) -> list[SubscriptionResponse]:
    subs = await _db.db.subscriptions.find({"user_id": user_id}).sort("created_at", -1).to_list(length=50)
    return [subscription_to_response(s) for s in subs]


async def list_expiring_subscriptions(days_ahead: Optional[int] = None) -> list[dict]:
    """Active subscriptions whose end_at falls within the next days_ahead days."""
    days_ahead = days_ahead if days_ahead is not None else settings.SUBSCRIPTION_EXPIRING_SOON_DAYS
    now = utcnow()
    subs = await _db.db.subscriptions.find({
        "status": SubscriptionStatus.active.value,
        "end_at": {"$ne": None, "$gte": now, "$lte": now + timedelta(days=days_ahead)},
    }).sort("end_at", 1).to_list(length=1000)
    return [
        {
            "id": str(s["_id"]),
            "user_id": s["user_id"],
            "package_id": str(s["package_id"]),
            "end_at": as_utc(s["end_at"]),
        }
        for s in subs
    ]
