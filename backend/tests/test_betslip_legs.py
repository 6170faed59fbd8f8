"""
backend/tests/test_betslip_legs.py

Purpose:
    Leg management: leg_order allocation, single->multi conversion, odds
    validation, leg_order race retry, and parent re-derivation on leg
    update/delete.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.models.user import Actor
from app.services import betslip_service
from app.services.errors import InternalError, NotFoundError, ValidationError

ADMIN = Actor(id="admin-1", role="admin")
T0 = datetime(2026, 4, 1, tzinfo=timezone.utc)


def _slip(type_: str = "single") -> dict:
    return {
        "_id": ObjectId(),
        "type": type_,
        "league": "EPL",
        "title": "Weekend acca",
        "selection": "See legs",
        "odds_decimal": 1.8,
        "combined_odds": None,
        "stake_units": 2.0,
        "status": "pending",
        "outcome": "pending",
        "settled_at": None,
        "posted_at": T0,
    }


async def _add(betslip_id: str, odds: float = 1.8, title: str = "Leg"):
    return await betslip_service.add_leg(
        betslip_id, ADMIN, title=title, description="Match winner", odds_decimal=odds,
    )


@pytest.mark.asyncio
async def test_first_leg_gets_order_one_and_stays_single(fake_db, published):
    slip = _slip()
    fake_db.betslips.seed(slip)

    leg = await _add(str(slip["_id"]))

    assert leg["leg_order"] == 1
    assert fake_db.betslips.get(slip["_id"])["type"] == "single"


@pytest.mark.asyncio
async def test_second_leg_converts_single_to_multi(fake_db, published):
    slip = _slip()
    fake_db.betslips.seed(slip)

    await _add(str(slip["_id"]), 1.5)
    await _add(str(slip["_id"]), 2.0)

    stored = fake_db.betslips.get(slip["_id"])
    assert stored["type"] == "multi"
    assert stored["combined_odds"] == pytest.approx(3.0)
    assert stored["status"] == "pending"


@pytest.mark.asyncio
async def test_leg_orders_are_contiguous(fake_db, published):
    slip = _slip()
    fake_db.betslips.seed(slip)

    for i in range(5):
        await _add(str(slip["_id"]), title=f"Leg {i}")

    orders = sorted(leg["leg_order"] for leg in fake_db.betslip_legs.docs)
    assert orders == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_next_order_follows_max_even_with_gaps(fake_db, published):
    slip = _slip("multi")
    fake_db.betslips.seed(slip)
    fake_db.betslip_legs.seed(
        {"betslip_id": str(slip["_id"]), "leg_order": 3, "odds_decimal": 1.5, "status": "pending"},
        {"betslip_id": str(slip["_id"]), "leg_order": 1, "odds_decimal": 1.5, "status": "pending"},
    )

    leg = await _add(str(slip["_id"]))
    assert leg["leg_order"] == 4


@pytest.mark.asyncio
@pytest.mark.parametrize("odds", [1.01, 1.0, 0.5])
async def test_leg_odds_must_exceed_minimum(fake_db, published, odds):
    slip = _slip()
    fake_db.betslips.seed(slip)

    with pytest.raises(ValidationError):
        await _add(str(slip["_id"]), odds)
    assert fake_db.betslip_legs.docs == []


@pytest.mark.asyncio
async def test_leg_requires_descriptive_fields(fake_db, published):
    slip = _slip()
    fake_db.betslips.seed(slip)

    with pytest.raises(ValidationError):
        await betslip_service.add_leg(str(slip["_id"]), ADMIN, title=" ", description="x", odds_decimal=2.0)


@pytest.mark.asyncio
async def test_add_leg_to_missing_betslip(fake_db, published):
    with pytest.raises(NotFoundError):
        await _add(str(ObjectId()))


@pytest.mark.asyncio
async def test_leg_order_race_is_retried(fake_db, published):
    slip = _slip()
    fake_db.betslips.seed(slip)
    fake_db.betslip_legs.fail_next("insert_one", DuplicateKeyError("E11000", 11000))

    leg = await _add(str(slip["_id"]))

    assert leg["leg_order"] == 1
    assert len(fake_db.betslip_legs.docs) == 1


@pytest.mark.asyncio
async def test_failed_insert_reverts_conversion(fake_db, published):
    slip = _slip()
    fake_db.betslips.seed(slip)
    await _add(str(slip["_id"]))
    fake_db.betslip_legs.fail_next("insert_one", PyMongoError("insert failed"))

    with pytest.raises(InternalError):
        await _add(str(slip["_id"]))

    assert fake_db.betslips.get(slip["_id"])["type"] == "single"
    assert len(fake_db.betslip_legs.docs) == 1


async def _multi_with_legs(fake_db, *odds: float) -> tuple[dict, list[dict]]:
    slip = _slip()
    fake_db.betslips.seed(slip)
    legs = [await _add(str(slip["_id"]), o, title=f"Leg {i + 1}") for i, o in enumerate(odds)]
    return slip, legs


@pytest.mark.asyncio
async def test_leg_status_updates_drive_parent_outcome(fake_db, published):
    slip, legs = await _multi_with_legs(fake_db, 1.5, 2.0)
    betslip_id = str(slip["_id"])

    updated = await betslip_service.update_leg(betslip_id, legs[0]["id"], ADMIN, status="won")
    assert updated["settled_at"] is not None
    assert fake_db.betslips.get(slip["_id"])["outcome"] == "pending"

    await betslip_service.update_leg(betslip_id, legs[1]["id"], ADMIN, status="won")
    parent = fake_db.betslips.get(slip["_id"])
    assert parent["status"] == "settled"
    assert parent["outcome"] == "won"
    assert parent["settled_at"] is not None
    assert [e.outcome for e in published] == ["won"]

    # Reopening a leg reopens the parent
    reopened = await betslip_service.update_leg(betslip_id, legs[1]["id"], ADMIN, status="pending")
    assert reopened["settled_at"] is None
    parent = fake_db.betslips.get(slip["_id"])
    assert parent["status"] == "pending"
    assert parent["outcome"] == "pending"
    assert parent["settled_at"] is None


@pytest.mark.asyncio
async def test_lost_leg_loses_parent_and_void_leg_keeps_combined_odds(fake_db, published):
    slip, legs = await _multi_with_legs(fake_db, 1.5, 2.0, 3.0)
    betslip_id = str(slip["_id"])

    await betslip_service.update_leg(betslip_id, legs[2]["id"], ADMIN, status="void")
    assert fake_db.betslips.get(slip["_id"])["combined_odds"] == pytest.approx(9.0)

    await betslip_service.update_leg(betslip_id, legs[0]["id"], ADMIN, status="lost")
    parent = fake_db.betslips.get(slip["_id"])
    assert parent["outcome"] == "lost"
    assert parent["status"] == "settled"


@pytest.mark.asyncio
async def test_update_leg_validates_odds(fake_db, published):
    slip, legs = await _multi_with_legs(fake_db, 1.5, 2.0)

    with pytest.raises(ValidationError):
        await betslip_service.update_leg(str(slip["_id"]), legs[0]["id"], ADMIN, odds_decimal=1.01)

    await betslip_service.update_leg(str(slip["_id"]), legs[0]["id"], ADMIN, odds_decimal=2.5)
    assert fake_db.betslips.get(slip["_id"])["combined_odds"] == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_update_unknown_leg(fake_db, published):
    slip, _ = await _multi_with_legs(fake_db, 1.5, 2.0)
    with pytest.raises(NotFoundError):
        await betslip_service.update_leg(str(slip["_id"]), str(ObjectId()), ADMIN, status="won")


@pytest.mark.asyncio
async def test_delete_last_leg_is_refused(fake_db, published):
    slip = _slip()
    fake_db.betslips.seed(slip)
    leg = await _add(str(slip["_id"]))

    with pytest.raises(ValidationError):
        await betslip_service.delete_leg(str(slip["_id"]), leg["id"], ADMIN)
    assert len(fake_db.betslip_legs.docs) == 1


@pytest.mark.asyncio
async def test_delete_down_to_one_leg_reverts_to_single(fake_db, published):
    slip, legs = await _multi_with_legs(fake_db, 1.5, 2.0)

    await betslip_service.delete_leg(str(slip["_id"]), legs[0]["id"], ADMIN)

    parent = fake_db.betslips.get(slip["_id"])
    assert parent["type"] == "single"
    assert parent["odds_decimal"] == 2.0
    assert parent["combined_odds"] is None


@pytest.mark.asyncio
async def test_delete_from_three_legs_recomputes_odds(fake_db, published):
    slip, legs = await _multi_with_legs(fake_db, 1.5, 2.0, 3.0)

    await betslip_service.delete_leg(str(slip["_id"]), legs[2]["id"], ADMIN)

    parent = fake_db.betslips.get(slip["_id"])
    assert parent["type"] == "multi"
    assert parent["combined_odds"] == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_list_legs_is_ordered(fake_db, published):
    slip, _ = await _multi_with_legs(fake_db, 1.5, 2.0, 3.0)

    legs = await betslip_service.list_legs(str(slip["_id"]))
    assert [leg["leg_order"] for leg in legs] == [1, 2, 3]


@pytest.mark.asyncio
async def test_won_multi_with_void_leg_uses_product_of_all_legs(fake_db, published):
    slip, legs = await _multi_with_legs(fake_db, 1.5, 2.0, 1.8)
    betslip_id = str(slip["_id"])

    await betslip_service.update_leg(betslip_id, legs[2]["id"], ADMIN, status="void")
    await betslip_service.update_leg(betslip_id, legs[0]["id"], ADMIN, status="won")
    await betslip_service.update_leg(betslip_id, legs[1]["id"], ADMIN, status="won")

    parent = fake_db.betslips.get(slip["_id"])
    assert parent["outcome"] == "won"
    assert parent["combined_odds"] == pytest.approx(5.4)
    assert published[-1].profit_units == pytest.approx(2.0 * (5.4 - 1.0))


@pytest.mark.asyncio
async def test_adding_after_delete_back_to_single_converts_again(fake_db, published):
    slip, legs = await _multi_with_legs(fake_db, 1.5, 2.0)
    betslip_id = str(slip["_id"])

    await betslip_service.delete_leg(betslip_id, legs[0]["id"], ADMIN)
    assert fake_db.betslips.get(slip["_id"])["type"] == "single"

    leg = await _add(betslip_id, 3.0)

    parent = fake_db.betslips.get(slip["_id"])
    assert leg["leg_order"] == 3
    assert parent["type"] == "multi"
    assert parent["combined_odds"] == pytest.approx(6.0)

    with pytest.raises(ValidationError):
        await betslip_service.settle_betslip(betslip_id, "won", ADMIN)
