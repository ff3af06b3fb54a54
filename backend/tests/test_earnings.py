from __future__ import annotations

from datetime import timedelta

import pytest
from bson import ObjectId

from conftest import NOW, order_doc, seller_doc
from utils.earnings import calculate_earnings, compute_earnings, schedule_payout
from utils.errors import ValidationFailed
from utils.money import round_money


def test_reference_scenario() -> None:
    e = compute_earnings(items_total=1000, shipping_charge=40, commission_percent=10, calculated_at=NOW)
    assert e.commission_amount == 100
    assert e.cgst == 9
    assert e.sgst == 9
    assert e.total_tax == 18
    assert e.penalty == 0
    assert e.net_seller_earning == 842
    assert e.calculated_at == NOW


@pytest.mark.parametrize(
    ("items_total", "percent", "shipping", "penalty"),
    [
        (1000, 10, 40, 0),
        (499.99, 12.5, 40, 0),
        (2599, 7, 0, 25),
        (89.5, 18, 65, 10),
    ],
)
def test_net_earning_formula(items_total, percent, shipping, penalty) -> None:
    e = compute_earnings(
        items_total=items_total,
        shipping_charge=shipping,
        commission_percent=percent,
        penalty=penalty,
        calculated_at=NOW,
    )
    commission = round_money(items_total * percent / 100)
    tax = round_money(round_money(commission * 9 / 100) * 2)
    expected = round_money(items_total - commission - shipping - tax - penalty)
    assert e.net_seller_earning == expected
    assert abs(e.net_seller_earning - (items_total - items_total * percent / 100 * 1.18 - shipping - penalty)) < 0.03


def test_zero_items_total_is_not_clamped() -> None:
    e = compute_earnings(items_total=0, shipping_charge=40, commission_percent=10, calculated_at=NOW)
    assert e.commission_amount == 0
    assert e.net_seller_earning == -40


def test_compute_is_deterministic() -> None:
    first = compute_earnings(items_total=777.77, shipping_charge=40, commission_percent=11, calculated_at=NOW)
    second = compute_earnings(items_total=777.77, shipping_charge=40, commission_percent=11, calculated_at=NOW)
    assert first == second


async def _delivered(db, *, shipping_charge=40, days_ago=1):
    seller = seller_doc()
    await db.users.insert_one(seller)
    order = order_doc(seller["_id"], shipping_charge=shipping_charge)
    order["status"] = "delivered"
    order["delivered_at"] = NOW - timedelta(days=days_ago)
    await db.orders.insert_one(order)
    return order


@pytest.mark.asyncio
async def test_calculate_persists_and_schedules_payout(db) -> None:
    order = await _delivered(db)

    breakdown = await calculate_earnings(db, order, now=NOW)

    stored = await db.orders.find_one({"_id": order["_id"]})
    assert breakdown.net_seller_earning == 842
    assert stored["earnings"]["net_seller_earning"] == 842
    assert stored["earnings_stale"] is False
    assert stored["payout"]["status"] == "held"
    assert stored["payout"]["scheduled_date"] == order["delivered_at"] + timedelta(days=7)


@pytest.mark.asyncio
async def test_recalculation_overwrites_not_accumulates(db) -> None:
    order = await _delivered(db)

    first = await calculate_earnings(db, order, now=NOW)
    again = await db.orders.find_one({"_id": order["_id"]})
    second = await calculate_earnings(db, again, now=NOW)

    assert first == second
    stored = await db.orders.find_one({"_id": order["_id"]})
    assert stored["earnings"]["net_seller_earning"] == 842


@pytest.mark.asyncio
async def test_penalty_is_input_and_carried_over(db) -> None:
    order = await _delivered(db)

    await calculate_earnings(db, order, penalty=50, now=NOW)
    stored = await db.orders.find_one({"_id": order["_id"]})
    assert stored["earnings"]["net_seller_earning"] == 792

    # no penalty supplied: previous one stays
    await calculate_earnings(db, stored, now=NOW)
    stored = await db.orders.find_one({"_id": order["_id"]})
    assert stored["earnings"]["penalty"] == 50
    assert stored["earnings"]["net_seller_earning"] == 792


@pytest.mark.asyncio
async def test_missing_shipping_uses_default(db) -> None:
    order = await _delivered(db, shipping_charge=None)
    breakdown = await calculate_earnings(db, order, now=NOW, default_shipping_charge=40)
    assert breakdown.shipping_cost == 40


@pytest.mark.asyncio
async def test_recalculation_does_not_reset_claimed_payout(db) -> None:
    order = await _delivered(db, days_ago=10)
    txn_id = ObjectId()
    await db.orders.update_one(
        {"_id": order["_id"]},
        {"$set": {"payout": {"status": "processing", "transaction_id": txn_id}}},
    )

    stored = await db.orders.find_one({"_id": order["_id"]})
    await calculate_earnings(db, stored, now=NOW)

    stored = await db.orders.find_one({"_id": order["_id"]})
    assert stored["payout"]["status"] == "processing"
    assert stored["payout"]["transaction_id"] == txn_id


@pytest.mark.asyncio
async def test_schedule_payout_runs_once(db) -> None:
    order = await _delivered(db)

    assert await schedule_payout(db, order) is True
    stale_copy = dict(order)  # still says not_eligible
    assert await schedule_payout(db, stale_copy) is False


@pytest.mark.asyncio
async def test_undelivered_order_is_rejected(db) -> None:
    seller = seller_doc()
    order = order_doc(seller["_id"])
    await db.orders.insert_one(order)

    with pytest.raises(ValidationFailed):
        await calculate_earnings(db, order, now=NOW)
