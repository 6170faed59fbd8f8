"""
backend/app/routers/admin.py

Purpose:
    Admin operational endpoints: event bus counters, background worker state
    and the audit log feed.

Dependencies:
    - app.services.auth_service
    - app.services.event_bus
    - app.workers._state
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

import app.database as _db
from app.services.auth_service import get_admin_user
from app.services.event_bus import event_bus
from app.utils import as_utc
from app.workers._state import get_worker_state

logger = logging.getLogger("vipslips.admin")
router = APIRouter(prefix="/api/admin", tags=["admin"])

_WORKERS = {
    "subscription_sweeper": {"label": "Subscription end-date sweep"},
}


@router.get("/event-bus")
async def event_bus_stats(admin=Depends(get_admin_user)):
    """In-process notification bus counters and recent handler errors."""
    return event_bus.stats()


@router.get("/workers")
async def worker_status(admin=Depends(get_admin_user)):
    """Last run and next scheduled run of each background worker."""
    from app.main import scheduler

    items: list[dict[str, Any]] = []
    for worker_id, meta in _WORKERS.items():
        state = await get_worker_state(worker_id) or {}
        job = scheduler.get_job(worker_id)
        items.append({
            "id": worker_id,
            "label": meta["label"],
            "last_run": as_utc(state.get("synced_at")),
            "last_result": state.get("last_result"),
            "scheduled": job is not None,
            "next_run": job.next_run_time.isoformat() if job and job.next_run_time else None,
        })
    return {"workers": items}


@router.get("/audit-logs")
async def audit_logs(
    target_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None, max_length=64),
    limit: int = Query(50, ge=1, le=500),
    admin=Depends(get_admin_user),
):
    """Most recent audit entries, optionally filtered by target or action."""
    query: dict[str, Any] = {}
    if target_id:
        query["target_id"] = target_id
    if action:
        query["action"] = action
    docs = await _db.db.audit_logs.find(query).sort("timestamp", -1).to_list(length=limit)
    return {
        "items": [
            {
                "id": str(d["_id"]),
                "timestamp": as_utc(d["timestamp"]),
                "actor_id": d["actor_id"],
                "target_id": d["target_id"],
                "action": d["action"],
                "metadata": d.get("metadata", {}),
                "ip_truncated": d.get("ip_truncated", ""),
            }
            for d in docs
        ],
    }
