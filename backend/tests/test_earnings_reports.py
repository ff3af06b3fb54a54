from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from conftest import NOW, order_doc
from utils.earnings import compute_earnings
from utils.earnings_reports import (
    earnings_analytics,
    earnings_summary,
    list_detailed_earnings,
    list_earnings_breakdown,
)
from utils.errors import ValidationFailed


async def _earned(db, seller_id, *, items_total, delivered_at, penalty=0, status="delivered"):
    order = order_doc(seller_id, price=items_total, now=delivered_at - timedelta(days=2))
    order["status"] = status
    order["delivered_at"] = delivered_at
    order["earnings"] = compute_earnings(
        items_total=items_total,
        shipping_charge=40,
        commission_percent=10,
        penalty=penalty,
        calculated_at=delivered_at,
    ).model_dump()
    await db.orders.insert_one(order)
    return order


@pytest.mark.asyncio
async def test_breakdown_totals_every_deduction(db, seller) -> None:
    await _earned(db, seller["_id"], items_total=1000, delivered_at=NOW - timedelta(days=40))
    await _earned(db, seller["_id"], items_total=500, delivered_at=NOW - timedelta(days=2), penalty=20)
    await _earned(db, seller["_id"], items_total=900, delivered_at=NOW - timedelta(days=5), status="returned")

    result = await list_earnings_breakdown(db, seller["_id"])

    assert result["breakdown"] == {
        "total_orders": 2,
        "total_sales": 1500,
        "total_commission": 150,
        "total_tax": 27,
        "total_shipping": 80,
        "total_penalty": 20,
        "net_earnings": 1223,
        "average_commission_percent": 10,
    }
    assert len(result["orders"]) == 2


@pytest.mark.asyncio
async def test_breakdown_respects_delivery_range(db, seller) -> None:
    await _earned(db, seller["_id"], items_total=1000, delivered_at=NOW - timedelta(days=40))
    recent = await _earned(db, seller["_id"], items_total=500, delivered_at=NOW - timedelta(days=2))

    result = await list_earnings_breakdown(db, seller["_id"], start=NOW - timedelta(days=10), end=NOW)

    assert result["breakdown"]["total_orders"] == 1
    assert result["breakdown"]["net_earnings"] == 401
    assert result["orders"][0]["id"] == str(recent["_id"])

    with pytest.raises(ValidationFailed):
        await list_earnings_breakdown(db, seller["_id"], start=NOW, end=NOW - timedelta(days=1))


@pytest.mark.asyncio
async def test_breakdown_without_orders(db, seller) -> None:
    result = await list_earnings_breakdown(db, seller["_id"])
    assert result["breakdown"]["total_orders"] == 0
    assert result["breakdown"]["net_earnings"] == 0
    assert result["orders"] == []


async def _four_months(db, seller_id):
    await _earned(db, seller_id, items_total=1000, delivered_at=datetime(2026, 10, 1, 9, 0))
    await _earned(db, seller_id, items_total=500, delivered_at=datetime(2026, 9, 15, 10, 0))
    await _earned(db, seller_id, items_total=500, delivered_at=datetime(2026, 9, 20, 10, 0))
    await _earned(db, seller_id, items_total=1000, delivered_at=datetime(2026, 1, 10, 10, 0))


@pytest.mark.asyncio
async def test_summary_groups_recent_months(db, seller) -> None:
    await _four_months(db, seller["_id"])

    summary = await earnings_summary(db, seller["_id"], now=NOW)

    assert summary["monthly_earnings"] == [
        {"month": "2026-10", "amount": 842, "orders": 1},
        {"month": "2026-09", "amount": 802, "orders": 2},
    ]
    assert summary["total_earnings"] == 1644
    assert summary["total_orders"] == 3
    assert summary["last_updated"] == NOW


@pytest.mark.asyncio
async def test_analytics_compares_month_over_month(db, seller) -> None:
    await _four_months(db, seller["_id"])

    analytics = await earnings_analytics(db, seller["_id"], now=NOW)

    assert analytics["this_month"] == 842
    assert analytics["last_month"] == 802
    assert analytics["growth_rate"] == 4.99
    assert analytics["average_order_value"] == 621.5
    assert analytics["total_orders"] == 4


@pytest.mark.asyncio
async def test_analytics_without_last_month(db, seller) -> None:
    await _earned(db, seller["_id"], items_total=1000, delivered_at=datetime(2026, 10, 1, 9, 0))

    analytics = await earnings_analytics(db, seller["_id"], now=NOW)

    assert analytics["last_month"] == 0
    assert analytics["growth_rate"] == 0


@pytest.mark.asyncio
async def test_detailed_earnings_paginated_newest_first(db, seller) -> None:
    await _four_months(db, seller["_id"])

    page_one = await list_detailed_earnings(db, seller["_id"], page=1, limit=2)
    filtered = await list_detailed_earnings(db, seller["_id"], start=datetime(2026, 9, 1), end=datetime(2026, 9, 30))

    assert [e["delivered_at"] for e in page_one["earnings"]] == [
        "2026-10-01T09:00:00",
        "2026-09-20T10:00:00",
    ]
    assert page_one["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}
    assert filtered["pagination"]["total"] == 2
    assert all(e["net_seller_earning"] == 401 for e in filtered["earnings"])
