import logging
from datetime import datetime, timedelta

from bson import ObjectId
from pydantic import ValidationError

from config.constants import ORDERS
from config.env import RETURN_WINDOW_DAYS
from models.order import (
    OrderItem,
    OrderPricing,
    OrderStatus,
    PaymentStatus,
    PayoutRecord,
    PayoutStatus,
    ReturnStatus,
    TrackingInfo,
)
from utils.earnings import calculate_earnings
from utils.errors import Conflict, InvalidTransition, NotFound, ValidationFailed
from utils.guards import parse_object_id
from utils.money import round_money, sum_money
from utils.order_timeline import record_order_event_safe

logger = logging.getLogger(__name__)

S = OrderStatus

# ======================================================
# TRANSITIONS
# ======================================================

ORDER_TRANSITIONS = {
    S.PENDING: {S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.PROCESSING, S.CANCELLED},
    S.PROCESSING: {S.SHIPPED, S.CANCELLED},
    S.SHIPPED: {S.OUT_FOR_DELIVERY, S.DELIVERED, S.CANCELLED},
    S.OUT_FOR_DELIVERY: {S.DELIVERED, S.CANCELLED},
    S.DELIVERED: {S.RETURN_REQUESTED},
    S.RETURN_REQUESTED: {S.RETURN_APPROVED, S.RETURN_REJECTED},
    S.RETURN_APPROVED: {S.RETURNED},
    S.RETURN_REJECTED: {S.DELIVERED},
    S.RETURNED: {S.REFUNDED},
    S.CANCELLED: set(),
    S.REFUNDED: set(),
}

# Once money is claimed or paid the order can no longer be returned
PAYOUT_LOCKED_STATES = {PayoutStatus.PROCESSING.value, PayoutStatus.PAID.value}

TIMELINE_EVENTS = {
    S.CONFIRMED: "ORDER_CONFIRMED",
    S.PROCESSING: "ORDER_PROCESSING",
    S.SHIPPED: "ORDER_SHIPPED",
    S.OUT_FOR_DELIVERY: "ORDER_OUT_FOR_DELIVERY",
    S.DELIVERED: "ORDER_DELIVERED",
    S.CANCELLED: "ORDER_CANCELLED",
    S.RETURN_REQUESTED: "RETURN_REQUESTED",
    S.RETURN_APPROVED: "RETURN_APPROVED",
    S.RETURN_REJECTED: "RETURN_REJECTED",
    S.RETURNED: "RETURN_COMPLETED",
    S.REFUNDED: "ORDER_REFUNDED",
}


def can_transition(current, target) -> bool:
    try:
        current, target = OrderStatus(current), OrderStatus(target)
    except ValueError:
        return False
    return target in ORDER_TRANSITIONS[current]


# ======================================================
# CHECKOUT
# ======================================================

def build_order_document(
    *,
    order_number: str,
    buyer_id,
    seller_id,
    items: list[dict],
    shipping_charge=None,
    tax=0,
    discount=0,
    payment_method: str = "cod",
    now: datetime | None = None,
) -> dict:
    """
    New order as stored at checkout: status pending, payout not yet
    eligible, no earnings.
    """
    now = now or datetime.utcnow()

    try:
        parsed_items = [OrderItem(**item) for item in items]
    except ValidationError as e:
        raise ValidationFailed(f"Invalid order items: {e.errors()[0]['msg']}")
    if not parsed_items:
        raise ValidationFailed("Order must contain at least one item")

    items_total = sum_money(item.price * item.quantity for item in parsed_items)
    pricing = OrderPricing(
        items_total=items_total,
        shipping_charge=shipping_charge,
        tax=tax,
        discount=discount,
        total=round_money(items_total + (shipping_charge or 0) + tax - discount),
    )

    return {
        "_id": ObjectId(),
        "order_number": order_number,
        "buyer_id": parse_object_id(buyer_id, "buyer_id"),
        "seller_id": parse_object_id(seller_id, "seller_id"),
        "items": [item.model_dump() for item in parsed_items],
        "pricing": pricing.model_dump(),
        "payment": {
            "method": payment_method,
            "status": PaymentStatus.PENDING.value,
            "paid_at": None,
        },
        "status": S.PENDING.value,
        "status_history": [
            {"status": S.PENDING.value, "comment": None, "actor_id": None, "at": now}
        ],
        "payout": PayoutRecord(status=PayoutStatus.NOT_ELIGIBLE).model_dump(),
        "delivered_at": None,
        "created_at": now,
        "updated_at": now,
    }


# ======================================================
# SIDE EFFECTS PER TARGET STATE
# ======================================================

def _transition_fields(
    order: dict,
    target: OrderStatus,
    *,
    now: datetime,
    comment: str | None,
    reason: str | None,
    tracking: dict | None,
    return_window_days: int,
) -> dict:
    fields = {}

    if target == S.SHIPPED:
        try:
            info = TrackingInfo(**(tracking or {}))
        except ValidationError:
            raise ValidationFailed("Courier and tracking id are required to ship an order")
        fields["tracking"] = info.model_dump()
        fields["shipped_at"] = now

    elif target == S.DELIVERED:
        # Re-delivery after a rejected return keeps the original date
        if not order.get("delivered_at"):
            fields["delivered_at"] = now
        fields["payment.status"] = PaymentStatus.COMPLETED.value
        payment = order.get("payment") or {}
        if payment.get("method") == "cod" and not payment.get("paid_at"):
            fields["payment.paid_at"] = now

    elif target == S.CANCELLED:
        fields["cancelled_at"] = now
        fields["cancellation_reason"] = reason or comment

    elif target == S.RETURN_REQUESTED:
        if not reason:
            raise ValidationFailed("Return reason required")
        delivered_at = order.get("delivered_at")
        if not delivered_at:
            raise ValidationFailed("Invalid delivery state")
        if now >= delivered_at + timedelta(days=return_window_days):
            raise ValidationFailed(f"Return window has expired ({return_window_days} days)")
        if (order.get("payout") or {}).get("status") in PAYOUT_LOCKED_STATES:
            raise ValidationFailed("Order is already claimed for payout")
        fields["return_request"] = {
            "reason": reason,
            "status": ReturnStatus.PENDING.value,
            "requested_at": now,
            "approved_at": None,
            "rejected_at": None,
            "completed_at": None,
            "rejection_reason": None,
        }

    elif target == S.RETURN_APPROVED:
        fields["return_request.status"] = ReturnStatus.APPROVED.value
        fields["return_request.approved_at"] = now

    elif target == S.RETURN_REJECTED:
        fields["return_request.status"] = ReturnStatus.REJECTED.value
        fields["return_request.rejected_at"] = now
        fields["return_request.rejection_reason"] = reason or comment

    elif target == S.RETURNED:
        fields["return_request.status"] = ReturnStatus.COMPLETED.value
        fields["return_request.completed_at"] = now
        fields["payment.status"] = PaymentStatus.REFUNDED.value

    elif target == S.REFUNDED:
        fields["refunded_at"] = now

    return fields


# ======================================================
# TRANSITION
# ======================================================

async def transition_order(
    db,
    order_id,
    new_status,
    *,
    actor_id=None,
    actor_role: str = "system",
    comment: str | None = None,
    reason: str | None = None,
    tracking: dict | None = None,
    now: datetime | None = None,
    return_window_days: int = RETURN_WINDOW_DAYS,
    earnings_options: dict | None = None,
) -> dict:
    now = now or datetime.utcnow()
    order_oid = parse_object_id(order_id, "order_id")

    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise ValidationFailed(f"Unknown order status: {new_status}")

    order = await db[ORDERS].find_one({"_id": order_oid})
    if not order:
        raise NotFound("Order not found")

    current = order.get("status")
    if not can_transition(current, target):
        raise InvalidTransition(current, target.value)

    fields = _transition_fields(
        order,
        target,
        now=now,
        comment=comment,
        reason=reason,
        tracking=tracking,
        return_window_days=return_window_days,
    )
    fields["status"] = target.value
    fields["updated_at"] = now

    history = {
        "status": target.value,
        "comment": comment,
        "actor_id": actor_id,
        "at": now,
    }

    # Compare-and-set on the status we validated against
    res = await db[ORDERS].update_one(
        {"_id": order["_id"], "status": current},
        {"$set": fields, "$push": {"status_history": history}},
    )
    if res.modified_count != 1:
        raise Conflict("Order status changed concurrently, retry")

    logger.info("ORDER_STATUS order=%s from=%s to=%s", order["_id"], current, target.value)

    await record_order_event_safe(
        db,
        order_id=order["_id"],
        event=TIMELINE_EVENTS[target],
        actor_role=actor_role,
        actor_id=actor_id,
        metadata={"from": current, "comment": comment},
        at=now,
    )

    updated = await db[ORDERS].find_one({"_id": order["_id"]})

    if target == S.DELIVERED:
        try:
            await calculate_earnings(
                db,
                updated,
                now=now,
                return_window_days=return_window_days,
                **(earnings_options or {}),
            )
        except Exception:
            # Delivery stands; earnings get recomputed later
            logger.exception("EARNINGS_ERROR order=%s", order["_id"])
            await db[ORDERS].update_one(
                {"_id": order["_id"]},
                {"$set": {"earnings_stale": True}},
            )
        updated = await db[ORDERS].find_one({"_id": order["_id"]})

    return updated
