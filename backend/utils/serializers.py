from bson import ObjectId
from datetime import datetime


def serialize_object_id(value):
    return str(value) if isinstance(value, ObjectId) else value


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def serialize_doc(doc: dict) -> dict:
    if not doc:
        return doc
    return serialize_value(dict(doc))


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else None


def serialize_wallet(wallet: dict) -> dict:
    return {
        "id": serialize_object_id(wallet.get("_id")),
        "seller_id": serialize_object_id(wallet["seller_id"]),

        "pending_amount": wallet.get("pending_amount", 0),
        "upcoming_payout": wallet.get("upcoming_payout", 0),
        "completed_payout": wallet.get("completed_payout", 0),
        "total_earnings": wallet.get("total_earnings", 0),

        "last_payout_date": wallet.get("last_payout_date"),
        "last_payout_amount": wallet.get("last_payout_amount", 0),
        "next_payout_date": wallet.get("next_payout_date"),

        "stats": wallet.get("stats") or {},

        "refreshed_at": wallet.get("refreshed_at"),
    }


def serialize_payout_transaction(txn: dict) -> dict:
    doc = serialize_doc(txn)
    doc["id"] = doc.pop("_id", None)
    # Never hand the encrypted account number to callers
    details = dict(doc.get("payment_details") or {})
    details.pop("bank_account_encrypted", None)
    doc["payment_details"] = details
    return doc


def serialize_order_earnings(order: dict) -> dict:
    earnings = order.get("earnings") or {}
    payout = order.get("payout") or {}
    return {
        "id": str(order["_id"]),
        "order_number": order.get("order_number"),
        "status": order.get("status"),
        "items_total": (order.get("pricing") or {}).get("items_total"),
        "net_seller_earning": earnings.get("net_seller_earning"),
        "payout_status": payout.get("status"),
        "payout_scheduled_date": _iso(payout.get("scheduled_date")),
        "delivered_at": _iso(order.get("delivered_at")),
    }
