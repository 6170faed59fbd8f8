"""Persistent worker state: last run time and result per worker, across restarts.

Stored in the lightweight `worker_state` collection keyed by worker id.
"""

from datetime import datetime, timedelta
from typing import Any

import app.database as _db
from app.utils import ensure_utc, utcnow


async def get_worker_state(worker_id: str) -> dict | None:
    return await _db.db.worker_state.find_one({"_id": worker_id})


async def get_synced_at(worker_id: str) -> datetime | None:
    """Get the last synced_at timestamp for a worker."""
    doc = await get_worker_state(worker_id)
    return doc["synced_at"] if doc else None


async def set_synced(worker_id: str, **result: Any) -> None:
    """Mark a worker as just run, keeping its latest result counters."""
    update: dict[str, Any] = {"synced_at": utcnow()}
    if result:
        update["last_result"] = result
    await _db.db.worker_state.update_one(
        {"_id": worker_id},
        {"$set": update},
        upsert=True,
    )


async def recently_synced(worker_id: str, max_age: timedelta) -> bool:
    """Check if a worker ran within the given time window."""
    last = await get_synced_at(worker_id)
    if not last:
        return False
    last = ensure_utc(last)
    return (utcnow() - last) < max_age
