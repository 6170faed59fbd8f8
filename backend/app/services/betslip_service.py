"""
backend/app/services/betslip_service.py

Purpose:
    Betslip settlement and leg management. Single slips are settled directly
    by an admin; multi slips are settled only through their legs, with the
    parent's status/outcome/combined odds recomputed after every leg change.

Dependencies:
    - app.database
    - app.services.odds_calculator
    - app.services.audit_service
    - app.services.event_bus
"""

import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.config import settings
import app.database as _db
from app.models.betslip import (
    BetslipOutcome,
    BetslipStatus,
    BetslipType,
    BulkSettleError,
    BulkSettleResponse,
    LegStatus,
    SettleBetslipResponse,
    SettlementSummary,
)
from app.models.user import Actor
from app.services.audit_service import log_audit
from app.services.errors import (
    ConflictError,
    DomainError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.services.entitlement_service import filter_betslips_by_tier
from app.services.event_bus import event_bus
from app.services.event_models import BetslipSettledEvent
from app.services.odds_calculator import (
    aggregate_pnl,
    derive_multi_outcome,
    effective_odds,
    profit_units,
)
from app.utils import as_utc, to_object_id, utcnow

logger = logging.getLogger("vipslips.betslip_service")

SETTLE_OUTCOMES = (
    BetslipOutcome.won.value,
    BetslipOutcome.lost.value,
    BetslipOutcome.void.value,
)
MULTI_LEG_SETTLE_MESSAGE = (
    "Multi-leg betslips are settled through their legs. "
    "Update individual leg statuses instead."
)


async def _load_betslip(betslip_id: str) -> dict:
    oid = to_object_id(betslip_id)
    if oid is None:
        raise NotFoundError("Betslip not found")
    try:
        slip = await _db.db.betslips.find_one({"_id": oid})
    except Exception as exc:
        logger.exception("Failed to load betslip %s", betslip_id)
        raise InternalError("Failed to load betslip") from exc
    if not slip:
        raise NotFoundError("Betslip not found")
    return slip


def _validate_outcome(outcome: str) -> str:
    if outcome not in SETTLE_OUTCOMES:
        raise ValidationError("Invalid outcome. Must be won, lost, or void")
    return outcome


def _is_settled(slip: dict) -> bool:
    return slip.get("outcome", BetslipOutcome.pending.value) != BetslipOutcome.pending.value


def _merge_notes(existing: Optional[str], notes: Optional[str]) -> Optional[str]:
    notes = (notes or "").strip()
    if not notes:
        return existing
    return f"{existing}\n\n{notes}" if existing else notes


# ---------- Single settlement ----------

async def _settle(slip: dict, outcome: str, notes: Optional[str], actor: Actor) -> SettleBetslipResponse:
    betslip_id = str(slip["_id"])
    if slip.get("type") == BetslipType.multi.value:
        raise ValidationError(MULTI_LEG_SETTLE_MESSAGE)
    if _is_settled(slip):
        raise InvalidTransitionError(f"Already settled as {slip['outcome']}")

    now = utcnow()
    update = {
        "status": BetslipStatus.settled.value,
        "outcome": outcome,
        "settled_at": now,
        "updated_at": now,
    }
    merged_notes = _merge_notes(slip.get("notes"), notes)
    if merged_notes != slip.get("notes"):
        update["notes"] = merged_notes

    try:
        updated = await _db.db.betslips.find_one_and_update(
            {
                "_id": slip["_id"],
                "type": {"$ne": BetslipType.multi.value},
                "outcome": BetslipOutcome.pending.value,
            },
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
    except Exception as exc:
        logger.exception("Failed to settle betslip %s", betslip_id)
        raise InternalError("Failed to settle betslip") from exc
    if updated is None:
        raise InvalidTransitionError("Betslip was settled concurrently")

    profit = profit_units(float(updated.get("stake_units") or 0.0), effective_odds(updated), outcome)
    await log_audit(
        actor_id=actor.id,
        target_id=betslip_id,
        action="BETSLIP_SETTLE",
        metadata={
            "outcome": outcome,
            "profit_units": profit,
            "stake_units": updated.get("stake_units"),
            "odds": effective_odds(updated),
            "notes": (notes or "").strip() or None,
        },
    )
    event_bus.publish(BetslipSettledEvent(
        source="betslip_service",
        betslip_id=betslip_id,
        outcome=outcome,
        profit_units=profit,
        settled_by=actor.id,
    ))
    logger.info(
        "Betslip settled: id=%s outcome=%s profit_units=%.2f by=%s",
        betslip_id, outcome, profit, actor.id,
    )
    return SettleBetslipResponse(
        betslip=betslip_to_response(updated),
        settlement=SettlementSummary(
            outcome=outcome,
            profit_units=profit,
            settled_by=actor.label,
            settled_at=now,
        ),
    )


async def settle_betslip(
    betslip_id: str,
    outcome: str,
    actor: Actor,
    notes: Optional[str] = None,
) -> SettleBetslipResponse:
    """Settle a single-type betslip as won, lost or void.

    Re-settling an already settled slip is refused even for the same outcome.
    """
    outcome = _validate_outcome(outcome)
    slip = await _load_betslip(betslip_id)
    return await _settle(slip, outcome, notes, actor)


async def bulk_settle(
    betslip_ids: list[str],
    outcome: str,
    actor: Actor,
    notes: Optional[str] = None,
) -> BulkSettleResponse:
    """Settle each id in order with the same outcome; failures are collected, never raised."""
    outcome = _validate_outcome(outcome)
    if not betslip_ids:
        raise ValidationError("Invalid request. Required: betslip_ids (array) and outcome")
    if len(betslip_ids) > settings.BULK_SETTLE_MAX_IDS:
        raise ValidationError(f"At most {settings.BULK_SETTLE_MAX_IDS} betslips can be settled at once")

    result = BulkSettleResponse()
    for betslip_id in betslip_ids:
        try:
            slip = await _load_betslip(betslip_id)
            await _settle(slip, outcome, notes, actor)
        except DomainError as exc:
            message = exc.message
            if isinstance(exc, InternalError):
                message = "Internal error during settlement"
            result.errors.append(BulkSettleError(id=betslip_id, error=message))
            result.failed_count += 1
            continue
        except Exception:
            logger.exception("Unexpected error settling betslip %s in bulk", betslip_id)
            result.errors.append(BulkSettleError(id=betslip_id, error="Internal error during settlement"))
            result.failed_count += 1
            continue
        result.success_count += 1

    await log_audit(
        actor_id=actor.id,
        target_id="bulk",
        action="BETSLIP_BULK_SETTLE",
        metadata={
            "outcome": outcome,
            "requested": len(betslip_ids),
            "success_count": result.success_count,
            "failed_count": result.failed_count,
        },
    )
    logger.info(
        "Bulk settle by %s: outcome=%s success=%d failed=%d",
        actor.id, outcome, result.success_count, result.failed_count,
    )
    return result


# ---------- Legs ----------

def _validate_leg_odds(odds: Optional[float]) -> float:
    if odds is None or float(odds) <= settings.LEG_MIN_ODDS:
        raise ValidationError(f"Odds must be greater than {settings.LEG_MIN_ODDS}")
    return float(odds)


async def list_legs(betslip_id: str) -> list[dict]:
    await _load_betslip(betslip_id)
    legs = await _db.db.betslip_legs.find({"betslip_id": betslip_id}).sort("leg_order", 1).to_list(length=100)
    return [leg_to_response(leg) for leg in legs]


async def _next_leg_order(betslip_id: str) -> int:
    last = await _db.db.betslip_legs.find(
        {"betslip_id": betslip_id}, {"leg_order": 1},
    ).sort("leg_order", -1).to_list(length=1)
    return last[0]["leg_order"] + 1 if last else 1


async def _set_type(slip_oid, betslip_type: BetslipType, **extra) -> None:
    await _db.db.betslips.update_one(
        {"_id": slip_oid},
        {"$set": {"type": betslip_type.value, "updated_at": utcnow(), **extra}},
    )


async def add_leg(
    betslip_id: str,
    actor: Actor,
    *,
    title: Optional[str],
    description: Optional[str],
    odds_decimal: Optional[float],
    notes: Optional[str] = None,
) -> dict:
    """Append a leg with the next free leg_order.

    Adding a leg to a single slip that already has one turns it into a multi
    slip before the insert, whatever leg_order the new leg receives.
    The (betslip_id, leg_order) unique index arbitrates concurrent adds.
    """
    title = (title or "").strip()
    description = (description or "").strip()
    if not title or not description or odds_decimal is None:
        raise ValidationError("Missing required fields: title, description, odds_decimal")
    odds = _validate_leg_odds(odds_decimal)

    slip = await _load_betslip(betslip_id)

    converted = False
    leg = None
    for attempt in range(1, settings.LEG_ORDER_INSERT_RETRIES + 1):
        try:
            next_order = await _next_leg_order(betslip_id)
            if (
                slip.get("type") == BetslipType.single.value
                and not converted
                and await _db.db.betslip_legs.count_documents({"betslip_id": betslip_id}) >= 1
            ):
                await _set_type(slip["_id"], BetslipType.multi)
                converted = True
            now = utcnow()
            leg = {
                "betslip_id": betslip_id,
                "leg_order": next_order,
                "title": title,
                "description": description,
                "odds_decimal": odds,
                "status": LegStatus.pending.value,
                "notes": (notes or "").strip() or None,
                "settled_at": None,
                "created_at": now,
                "updated_at": now,
            }
            result = await _db.db.betslip_legs.insert_one(leg)
            leg["_id"] = result.inserted_id
            break
        except DuplicateKeyError:
            logger.info(
                "leg_order race on betslip %s (attempt %d/%d); retrying",
                betslip_id, attempt, settings.LEG_ORDER_INSERT_RETRIES,
            )
            leg = None
            continue
        except Exception as exc:
            logger.exception("Failed to add leg to betslip %s", betslip_id)
            await _revert_conversion(slip, converted)
            raise InternalError("Failed to create leg") from exc

    if leg is None:
        await _revert_conversion(slip, converted)
        raise ConflictError("Could not allocate a leg order; please retry")

    if converted or slip.get("type") == BetslipType.multi.value:
        await recompute_multi_betslip(betslip_id)

    logger.info(
        "Leg added: betslip=%s leg_order=%d odds=%.2f by=%s",
        betslip_id, leg["leg_order"], odds, actor.id,
    )
    return leg_to_response(leg)


async def _revert_conversion(slip: dict, converted: bool) -> None:
    if not converted:
        return
    try:
        await _set_type(slip["_id"], BetslipType.single)
    except Exception:
        logger.exception("Failed to revert betslip %s to single after leg insert failure", slip["_id"])


async def _load_leg(betslip_id: str, leg_id: str) -> dict:
    oid = to_object_id(leg_id)
    leg = await _db.db.betslip_legs.find_one({"_id": oid, "betslip_id": betslip_id}) if oid else None
    if not leg:
        raise NotFoundError("Leg not found")
    return leg


async def update_leg(
    betslip_id: str,
    leg_id: str,
    actor: Actor,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    odds_decimal: Optional[float] = None,
    status: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    await _load_betslip(betslip_id)
    leg = await _load_leg(betslip_id, leg_id)

    now = utcnow()
    update: dict = {"updated_at": now}
    if title is not None:
        update["title"] = title.strip()
    if description is not None:
        update["description"] = description.strip()
    if notes is not None:
        update["notes"] = notes.strip() or None
    if odds_decimal is not None:
        update["odds_decimal"] = _validate_leg_odds(odds_decimal)
    if status is not None:
        status = status.value if isinstance(status, LegStatus) else str(status)
        if status not in {s.value for s in LegStatus}:
            raise ValidationError("Invalid leg status")
        update["status"] = status
        update["settled_at"] = None if status == LegStatus.pending.value else now

    try:
        updated = await _db.db.betslip_legs.find_one_and_update(
            {"_id": leg["_id"], "betslip_id": betslip_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
    except Exception as exc:
        logger.exception("Failed to update leg %s", leg_id)
        raise InternalError("Failed to update leg") from exc
    if updated is None:
        raise NotFoundError("Leg not found")

    await recompute_multi_betslip(betslip_id)
    await log_audit(
        actor_id=actor.id,
        target_id=betslip_id,
        action="BETSLIP_LEG_UPDATE",
        metadata={"leg_id": leg_id, "changes": {k: v for k, v in update.items() if k != "updated_at"}},
    )
    logger.info("Leg updated: betslip=%s leg=%s by=%s", betslip_id, leg_id, actor.id)
    return leg_to_response(updated)


async def delete_leg(betslip_id: str, leg_id: str, actor: Actor) -> dict:
    slip = await _load_betslip(betslip_id)
    leg = await _load_leg(betslip_id, leg_id)

    count = await _db.db.betslip_legs.count_documents({"betslip_id": betslip_id})
    if count <= 1:
        raise ValidationError("Cannot delete the last remaining leg of a betslip")

    result = await _db.db.betslip_legs.delete_one({"_id": leg["_id"], "betslip_id": betslip_id})
    if not result.deleted_count:
        raise NotFoundError("Leg not found")

    if count == 2:
        remaining = await _db.db.betslip_legs.find_one({"betslip_id": betslip_id})
        extra = {"combined_odds": None}
        if remaining:
            extra["odds_decimal"] = remaining["odds_decimal"]
        await _set_type(slip["_id"], BetslipType.single, **extra)
    else:
        await recompute_multi_betslip(betslip_id)

    await log_audit(
        actor_id=actor.id,
        target_id=betslip_id,
        action="BETSLIP_LEG_DELETE",
        metadata={
            "leg_id": leg_id,
            "title": leg.get("title"),
            "odds_decimal": leg.get("odds_decimal"),
        },
    )
    logger.info("Leg deleted: betslip=%s leg=%s by=%s", betslip_id, leg_id, actor.id)
    return {"message": "Leg deleted successfully"}


async def recompute_multi_betslip(betslip_id: str) -> Optional[dict]:
    """Re-derive a multi slip's combined odds and settlement from its legs.

    Only writer of status/outcome/settled_at/combined_odds for multi slips.
    Single slips are left alone.
    """
    oid = to_object_id(betslip_id)
    slip = await _db.db.betslips.find_one({"_id": oid}) if oid else None
    if not slip or slip.get("type") != BetslipType.multi.value:
        return None

    legs = await _db.db.betslip_legs.find({"betslip_id": betslip_id}).sort("leg_order", 1).to_list(length=100)
    derived = derive_multi_outcome(legs)

    update: dict = {"combined_odds": derived.combined_odds, "updated_at": utcnow()}
    if derived.should_settle:
        update["status"] = BetslipStatus.settled.value
        update["outcome"] = derived.outcome
        if slip.get("outcome") != derived.outcome or not slip.get("settled_at"):
            update["settled_at"] = utcnow()
    else:
        update["status"] = BetslipStatus.pending.value
        update["outcome"] = BetslipOutcome.pending.value
        update["settled_at"] = None

    updated = await _db.db.betslips.find_one_and_update(
        {"_id": oid, "type": BetslipType.multi.value},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )

    newly_settled = derived.should_settle and slip.get("outcome") != derived.outcome
    if updated is not None and newly_settled:
        profit = profit_units(float(updated.get("stake_units") or 0.0), derived.combined_odds, derived.outcome)
        await log_audit(
            actor_id="SYSTEM",
            target_id=betslip_id,
            action="BETSLIP_AUTO_SETTLE",
            metadata={"outcome": derived.outcome, "profit_units": profit, "reason": derived.reason},
        )
        event_bus.publish(BetslipSettledEvent(
            source="betslip_legs",
            betslip_id=betslip_id,
            outcome=derived.outcome,
            profit_units=profit,
            settled_by="SYSTEM",
        ))
        logger.info(
            "Multi betslip settled from legs: id=%s outcome=%s (%s)",
            betslip_id, derived.outcome, derived.reason,
        )
    return updated


# ---------- Reporting ----------

async def betslip_stats(user_tier: Optional[str] = None, *, all_tiers: bool = False) -> dict:
    """P&L summary over the betslips visible to user_tier (or all of them for admins)."""
    betslips = [slip async for slip in _db.db.betslips.find({})]
    if not all_tiers:
        betslips = filter_betslips_by_tier(betslips, user_tier)
    return aggregate_pnl(betslips)


# ---------- Serialization ----------

def betslip_to_response(doc: dict) -> dict:
    """Convert a betslips document to a response dict."""
    return {
        "id": str(doc["_id"]),
        "type": doc.get("type", BetslipType.single.value),
        "league": doc.get("league"),
        "title": doc.get("title"),
        "selection": doc.get("selection"),
        "odds_decimal": doc.get("odds_decimal"),
        "combined_odds": doc.get("combined_odds"),
        "stake_units": doc.get("stake_units"),
        "confidence_pct": doc.get("confidence_pct"),
        "min_tier": doc.get("min_tier"),
        "status": doc.get("status"),
        "outcome": doc.get("outcome"),
        "notes": doc.get("notes"),
        "event_datetime": as_utc(doc.get("event_datetime")),
        "posted_at": as_utc(doc.get("posted_at")),
        "settled_at": as_utc(doc.get("settled_at")),
        "created_at": as_utc(doc.get("created_at")),
        "updated_at": as_utc(doc.get("updated_at")),
    }


def leg_to_response(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "betslip_id": doc["betslip_id"],
        "leg_order": doc["leg_order"],
        "title": doc.get("title"),
        "description": doc.get("description"),
        "odds_decimal": doc.get("odds_decimal"),
        "status": doc.get("status", LegStatus.pending.value),
        "notes": doc.get("notes"),
        "settled_at": as_utc(doc.get("settled_at")),
        "created_at": as_utc(doc.get("created_at")),
        "updated_at": as_utc(doc.get("updated_at")),
    }
