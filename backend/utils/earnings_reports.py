import logging
from datetime import datetime

from config.constants import EARNINGS_PAGE_MAX_LIMIT, EARNINGS_SUMMARY_MONTHS, ORDERS
from models.order import OrderStatus
from utils.errors import ValidationFailed
from utils.guards import parse_object_id
from utils.money import quantize, round_money, to_decimal
from utils.serializers import serialize_order_earnings

logger = logging.getLogger(__name__)


# ==============================
# Queries
# ==============================

def _delivered_range(field: str, start: datetime | None, end: datetime | None) -> dict:
    if start and end and start > end:
        raise ValidationFailed("Start date must be before end date")

    bounds = {}
    if start:
        bounds["$gte"] = start
    if end:
        bounds["$lte"] = end
    return {field: bounds} if bounds else {}


def earned_orders_query(seller_oid, *, start=None, end=None) -> dict:
    """Delivered orders of one seller that carry an earnings record."""
    return {
        "seller_id": seller_oid,
        "status": OrderStatus.DELIVERED.value,
        "earnings.net_seller_earning": {"$exists": True},
        **_delivered_range("delivered_at", start, end),
    }


def _month_start(moment: datetime, months_back: int = 0) -> datetime:
    index = moment.year * 12 + (moment.month - 1) - months_back
    return datetime(index // 12, index % 12 + 1, 1)


async def _sum_net(db, query: dict) -> float:
    pipeline = [
        {"$match": query},
        {"$group": {
            "_id": None,
            "net": {"$sum": "$earnings.net_seller_earning"},
        }},
    ]
    result = await db[ORDERS].aggregate(pipeline).to_list(1)
    return round_money(result[0]["net"]) if result else 0.0


# ==============================
# Breakdown over a date range
# ==============================

async def list_earnings_breakdown(db, seller_id, *, start=None, end=None) -> dict:
    """
    Totals of every deduction between gross sales and net earnings for
    orders delivered in [start, end], plus the orders themselves.
    """
    seller_oid = parse_object_id(seller_id, "seller_id")
    query = earned_orders_query(seller_oid, start=start, end=end)
    query["earnings.net_seller_earning"] = {"$gt": 0}

    pipeline = [
        {"$match": query},
        {"$group": {
            "_id": None,
            "total_orders": {"$sum": 1},
            "total_sales": {"$sum": "$pricing.items_total"},
            "total_commission": {"$sum": "$earnings.commission_amount"},
            "total_tax": {"$sum": "$earnings.total_tax"},
            "total_shipping": {"$sum": "$earnings.shipping_cost"},
            "total_penalty": {"$sum": "$earnings.penalty"},
            "net_earnings": {"$sum": "$earnings.net_seller_earning"},
            "average_commission_percent": {"$avg": "$earnings.commission_percent"},
        }},
    ]
    rows = await db[ORDERS].aggregate(pipeline).to_list(1)
    totals = rows[0] if rows else {}

    orders = await db[ORDERS].find(query).sort("delivered_at", -1).to_list(None)

    breakdown = {
        field: round_money(totals.get(field))
        for field in (
            "total_sales",
            "total_commission",
            "total_tax",
            "total_shipping",
            "total_penalty",
            "net_earnings",
            "average_commission_percent",
        )
    }
    breakdown["total_orders"] = totals.get("total_orders", 0)

    logger.info("EARNINGS_BREAKDOWN seller=%s orders=%s", seller_oid, breakdown["total_orders"])
    return {
        "breakdown": breakdown,
        "orders": [serialize_order_earnings(o) for o in orders],
    }


# ==============================
# Monthly summary
# ==============================

async def earnings_summary(
    db,
    seller_id,
    *,
    now: datetime | None = None,
    months: int = EARNINGS_SUMMARY_MONTHS,
) -> dict:
    """Net earnings per delivery month for the last `months` months, newest first."""
    now = now or datetime.utcnow()
    seller_oid = parse_object_id(seller_id, "seller_id")
    since = _month_start(now, max(months, 1) - 1)

    pipeline = [
        {"$match": earned_orders_query(seller_oid, start=since)},
        {"$group": {
            "_id": {"year": {"$year": "$delivered_at"}, "month": {"$month": "$delivered_at"}},
            "amount": {"$sum": "$earnings.net_seller_earning"},
            "orders": {"$sum": 1},
        }},
    ]
    rows = await db[ORDERS].aggregate(pipeline).to_list(None)
    rows.sort(key=lambda r: (r["_id"]["year"], r["_id"]["month"]), reverse=True)

    monthly = [
        {
            "month": f"{r['_id']['year']:04d}-{r['_id']['month']:02d}",
            "amount": round_money(r["amount"]),
            "orders": r["orders"],
        }
        for r in rows
    ]

    return {
        "total_earnings": round_money(sum(to_decimal(m["amount"]) for m in monthly)),
        "total_orders": sum(m["orders"] for m in monthly),
        "monthly_earnings": monthly,
        "last_updated": now,
    }


# ==============================
# Paginated list
# ==============================

async def list_detailed_earnings(
    db,
    seller_id,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    seller_oid = parse_object_id(seller_id, "seller_id")
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), EARNINGS_PAGE_MAX_LIMIT)

    query = earned_orders_query(seller_oid, start=start, end=end)
    orders = await (
        db[ORDERS]
        .find(query)
        .sort("delivered_at", -1)
        .skip((page - 1) * limit)
        .limit(limit)
        .to_list(limit)
    )
    total = await db[ORDERS].count_documents(query)

    return {
        "earnings": [serialize_order_earnings(o) for o in orders],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


# ==============================
# Month over month
# ==============================

async def earnings_analytics(db, seller_id, *, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    seller_oid = parse_object_id(seller_id, "seller_id")

    this_month_start = _month_start(now)
    last_month_start = _month_start(now, 1)

    this_month = await _sum_net(db, earned_orders_query(seller_oid, start=this_month_start))
    last_month = await _sum_net(
        db,
        {
            **earned_orders_query(seller_oid),
            "delivered_at": {"$gte": last_month_start, "$lt": this_month_start},
        },
    )

    pipeline = [
        {"$match": earned_orders_query(seller_oid)},
        {"$group": {
            "_id": None,
            "orders": {"$sum": 1},
            "average": {"$avg": "$earnings.net_seller_earning"},
        }},
    ]
    rows = await db[ORDERS].aggregate(pipeline).to_list(1)
    overall = rows[0] if rows else {}

    growth_rate = 0.0
    if last_month > 0:
        delta = to_decimal(this_month) - to_decimal(last_month)
        growth_rate = float(quantize(delta / to_decimal(last_month) * 100))

    return {
        "this_month": this_month,
        "last_month": last_month,
        "growth_rate": growth_rate,
        "average_order_value": round_money(overall.get("average")),
        "total_orders": overall.get("orders", 0),
    }
