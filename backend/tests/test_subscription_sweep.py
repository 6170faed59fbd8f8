"""
backend/tests/test_subscription_sweep.py

Purpose:
    End-date sweep behaviour: only lapsed active rows expire, reruns are
    no-ops, per-row failures do not stop the batch, and the scheduled worker
    wrapper records its result.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from app.services import subscription_service
from app.workers import subscription_sweeper

NOW = datetime(2026, 6, 15, 12, tzinfo=timezone.utc)


def _active(end_at, user_id="user-1") -> dict:
    return {
        "_id": ObjectId(),
        "user_id": user_id,
        "package_id": str(ObjectId()),
        "status": "active",
        "start_at": end_at - timedelta(days=30),
        "end_at": end_at,
        "notes": None,
    }


@pytest.mark.asyncio
async def test_sweep_expires_only_lapsed_rows(fake_db, published):
    lapsed = _active(NOW - timedelta(hours=1))
    current = _active(NOW + timedelta(days=3))
    pending = {"_id": ObjectId(), "user_id": "user-3", "status": "pending", "end_at": None}
    fake_db.subscriptions.seed(lapsed, current, pending)

    count = await subscription_service.expire_ended_subscriptions(now=NOW)

    assert count == 1
    assert fake_db.subscriptions.get(lapsed["_id"])["status"] == "expired"
    assert fake_db.subscriptions.get(lapsed["_id"])["updated_by"] == "SYSTEM"
    assert fake_db.subscriptions.get(current["_id"])["status"] == "active"
    event = fake_db.subscription_events.docs[0]
    assert event["actor_user_id"] == "SYSTEM"
    assert event["notes"] == subscription_service.SWEEP_EXPIRE_NOTE
    assert published[0].source == "subscription_sweep"


@pytest.mark.asyncio
async def test_sweep_streams_every_lapsed_row(fake_db, published, monkeypatch):
    from fake_mongo import FakeCursor

    async def _capped_to_list(self, length=None):
        raise AssertionError("sweep must iterate the cursor, not load a capped list")

    monkeypatch.setattr(FakeCursor, "to_list", _capped_to_list)
    fake_db.subscriptions.seed(*[_active(NOW - timedelta(hours=i + 1), f"user-{i}") for i in range(25)])

    assert await subscription_service.expire_ended_subscriptions(now=NOW) == 25
    assert all(s["status"] == "expired" for s in fake_db.subscriptions.docs)


@pytest.mark.asyncio
async def test_sweep_is_idempotent(fake_db, published):
    fake_db.subscriptions.seed(_active(NOW - timedelta(days=1)), _active(NOW - timedelta(days=2), "user-2"))

    assert await subscription_service.expire_ended_subscriptions(now=NOW) == 2
    assert await subscription_service.expire_ended_subscriptions(now=NOW) == 0
    assert len(fake_db.subscription_events.docs) == 2


@pytest.mark.asyncio
async def test_sweep_continues_after_row_failure(fake_db, published):
    first = _active(NOW - timedelta(days=1))
    second = _active(NOW - timedelta(days=2), "user-2")
    fake_db.subscriptions.seed(first, second)
    fake_db.subscriptions.fail_next("find_one_and_update", PyMongoError("row write failed"))

    assert await subscription_service.expire_ended_subscriptions(now=NOW) == 1
    statuses = sorted(d["status"] for d in fake_db.subscriptions.docs)
    assert statuses == ["active", "expired"]

    # The failed row is picked up on the next run
    assert await subscription_service.expire_ended_subscriptions(now=NOW) == 1


@pytest.mark.asyncio
async def test_worker_records_result_and_sleeps(fake_db, published):
    fake_db.subscriptions.seed(_active(datetime.now(timezone.utc) - timedelta(days=1)))

    await subscription_sweeper.run_subscription_sweep()
    state = await fake_db.worker_state.find_one({"_id": subscription_sweeper.STATE_KEY})
    assert state["last_result"] == {"expired_count": 1}

    fake_db.subscriptions.seed(_active(datetime.now(timezone.utc) - timedelta(days=1), "user-2"))
    await subscription_sweeper.run_subscription_sweep()
    # Second run inside the smart-sleep window does nothing
    assert sum(1 for d in fake_db.subscriptions.docs if d["status"] == "active") == 1


@pytest.mark.asyncio
async def test_worker_swallows_sweep_errors(fake_db, monkeypatch):
    async def _boom():
        raise RuntimeError("db down")

    monkeypatch.setattr(subscription_sweeper, "expire_ended_subscriptions", _boom)

    await subscription_sweeper.run_subscription_sweep()
    assert await fake_db.worker_state.find_one({"_id": subscription_sweeper.STATE_KEY}) is None
