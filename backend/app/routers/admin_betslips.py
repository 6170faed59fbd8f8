"""Admin betslip API: settlement, bulk settlement and leg management."""

from fastapi import APIRouter, Depends, status

from app.models.betslip import (
    BulkSettleRequest,
    BulkSettleResponse,
    CreateLegRequest,
    SettleBetslipRequest,
    SettleBetslipResponse,
    UpdateLegRequest,
)
from app.models.user import Actor
from app.services.auth_service import get_admin_user
from app.services.betslip_service import (
    add_leg,
    betslip_stats,
    bulk_settle,
    delete_leg,
    list_legs,
    settle_betslip,
    update_leg,
)
from app.services.odds_calculator import leg_status_summary

router = APIRouter(prefix="/api/admin/betslips", tags=["admin-betslips"])


@router.post("/bulk-settle", response_model=BulkSettleResponse)
async def bulk_settle_betslips(body: BulkSettleRequest, admin=Depends(get_admin_user)):
    """Settle many single betslips with one outcome; per-id failures are reported, not raised."""
    return await bulk_settle(body.betslip_ids, body.outcome, Actor.from_user(admin), notes=body.notes)


@router.get("/stats")
async def stats(admin=Depends(get_admin_user)):
    """P&L summary across every betslip."""
    return await betslip_stats(all_tiers=True)


@router.post("/{betslip_id}/settle", response_model=SettleBetslipResponse)
async def settle(betslip_id: str, body: SettleBetslipRequest, admin=Depends(get_admin_user)):
    return await settle_betslip(betslip_id, body.outcome, Actor.from_user(admin), notes=body.notes)


# ---------- Legs ----------

@router.get("/{betslip_id}/legs")
async def get_legs(betslip_id: str, admin=Depends(get_admin_user)):
    legs = await list_legs(betslip_id)
    return {"legs": legs, "summary": leg_status_summary(legs)}


@router.post("/{betslip_id}/legs", status_code=status.HTTP_201_CREATED)
async def create_leg(betslip_id: str, body: CreateLegRequest, admin=Depends(get_admin_user)):
    leg = await add_leg(
        betslip_id,
        Actor.from_user(admin),
        title=body.title,
        description=body.description,
        odds_decimal=body.odds_decimal,
        notes=body.notes,
    )
    return {"leg": leg}


@router.put("/{betslip_id}/legs/{leg_id}")
async def edit_leg(betslip_id: str, leg_id: str, body: UpdateLegRequest, admin=Depends(get_admin_user)):
    leg = await update_leg(
        betslip_id,
        leg_id,
        Actor.from_user(admin),
        title=body.title,
        description=body.description,
        odds_decimal=body.odds_decimal,
        status=body.status,
        notes=body.notes,
    )
    return {"message": "Leg updated successfully", "leg": leg}


@router.delete("/{betslip_id}/legs/{leg_id}")
async def remove_leg(betslip_id: str, leg_id: str, admin=Depends(get_admin_user)):
    return await delete_leg(betslip_id, leg_id, Actor.from_user(admin))
