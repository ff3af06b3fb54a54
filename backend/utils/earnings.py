import logging
from datetime import datetime, timedelta

from config.constants import ORDERS
from config.env import (
    CGST_PERCENT,
    SGST_PERCENT,
    DEFAULT_COMMISSION_PERCENT,
    DEFAULT_SHIPPING_CHARGE,
    RETURN_WINDOW_DAYS,
)
from models.order import EarningsBreakdown, PayoutRecord, PayoutStatus
from utils.commission import lookup_commission_percent
from utils.errors import NotFound, ValidationFailed
from utils.money import percent_of, quantize, to_decimal

logger = logging.getLogger(__name__)


# ==============================
# Pure calculation
# ==============================

def compute_earnings(
    *,
    items_total,
    shipping_charge,
    commission_percent,
    penalty=0,
    calculated_at: datetime | None = None,
    cgst_percent: float = CGST_PERCENT,
    sgst_percent: float = SGST_PERCENT,
) -> EarningsBreakdown:
    """
    Net seller earning for one order.

    Every stored figure is rounded to 2 decimals before it feeds the next
    step, so recomputing from the same inputs always gives the same record.
    The net figure is not clamped: a negative earning is recorded as is.
    """
    items_total = quantize(items_total)
    shipping = quantize(shipping_charge)
    penalty = quantize(penalty)

    commission = percent_of(items_total, commission_percent)
    cgst = percent_of(commission, cgst_percent)
    sgst = percent_of(commission, sgst_percent)
    total_tax = quantize(cgst + sgst)

    net = quantize(items_total - commission - shipping - total_tax - penalty)

    return EarningsBreakdown(
        commission_percent=float(to_decimal(commission_percent)),
        commission_amount=float(commission),
        shipping_cost=float(shipping),
        cgst=float(cgst),
        sgst=float(sgst),
        total_tax=float(total_tax),
        penalty=float(penalty),
        net_seller_earning=float(net),
        calculated_at=calculated_at or datetime.utcnow(),
    )


def resolve_shipping_charge(order: dict, default_shipping_charge: float = DEFAULT_SHIPPING_CHARGE):
    shipping = (order.get("pricing") or {}).get("shipping_charge")
    return default_shipping_charge if shipping is None else shipping


def resolve_penalty(order: dict, penalty=None):
    if penalty is not None:
        return penalty
    return (order.get("earnings") or {}).get("penalty") or 0


# ==============================
# Payout scheduling (once)
# ==============================

async def schedule_payout(
    db,
    order: dict,
    *,
    return_window_days: int = RETURN_WINDOW_DAYS,
) -> bool:
    """
    Move an unscheduled payout to HELD until the return window closes.
    Already scheduled or claimed payouts are left untouched.
    """
    payout = order.get("payout") or {}
    current = payout.get("status")
    if current not in (None, PayoutStatus.NOT_ELIGIBLE.value):
        return False

    delivered_at = order.get("delivered_at")
    if not delivered_at:
        return False

    query = {"_id": order["_id"]}
    if current is None:
        query["payout.status"] = {"$exists": False}
    else:
        query["payout.status"] = current

    record = PayoutRecord(
        status=PayoutStatus.HELD,
        scheduled_date=delivered_at + timedelta(days=return_window_days),
    )

    res = await db[ORDERS].update_one(query, {"$set": {"payout": record.model_dump()}})
    if res.modified_count == 1:
        logger.info(
            "PAYOUT_SCHEDULED order=%s eligible_at=%s",
            order["_id"],
            record.scheduled_date,
        )
        return True
    return False


# ==============================
# Calculate + persist
# ==============================

async def calculate_earnings(
    db,
    order: dict,
    *,
    penalty=None,
    now: datetime | None = None,
    return_window_days: int = RETURN_WINDOW_DAYS,
    default_commission_percent: float = DEFAULT_COMMISSION_PERCENT,
    default_shipping_charge: float = DEFAULT_SHIPPING_CHARGE,
) -> EarningsBreakdown:
    if not order:
        raise NotFound("Order not found")

    if not order.get("delivered_at"):
        raise ValidationFailed("Earnings are calculated only for delivered orders")

    now = now or datetime.utcnow()

    commission_percent = await lookup_commission_percent(
        db,
        order,
        default_percent=default_commission_percent,
    )

    breakdown = compute_earnings(
        items_total=(order.get("pricing") or {}).get("items_total", 0),
        shipping_charge=resolve_shipping_charge(order, default_shipping_charge),
        commission_percent=commission_percent,
        penalty=resolve_penalty(order, penalty),
        calculated_at=now,
    )

    # Overwrite, never accumulate
    await db[ORDERS].update_one(
        {"_id": order["_id"]},
        {
            "$set": {
                "earnings": breakdown.model_dump(),
                "earnings_stale": False,
                "updated_at": now,
            }
        },
    )

    await schedule_payout(db, order, return_window_days=return_window_days)

    logger.info(
        "EARNINGS_CALCULATED order=%s commission=%s net=%s",
        order["_id"],
        breakdown.commission_amount,
        breakdown.net_seller_earning,
    )
    return breakdown
