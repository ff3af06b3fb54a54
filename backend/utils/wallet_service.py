import logging
from datetime import datetime, timedelta
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config.constants import ORDERS, PAYOUT_TRANSACTIONS, SECONDS_PER_DAY, SELLER_WALLETS
from config.env import RETURN_WINDOW_DAYS
from models.order import OrderStatus, PayoutStatus
from models.payout import TransactionStatus
from models.wallet import WalletSnapshot, WalletStats
from utils.guards import parse_object_id
from utils.money import round_money, sum_money

logger = logging.getLogger(__name__)

# ==============================
# Buckets
# ==============================

BUCKET_PENDING = "pending"
BUCKET_UPCOMING = "upcoming"

# Payout states already spoken for by a transaction
CLAIMED_PAYOUT_STATES = {PayoutStatus.PROCESSING.value, PayoutStatus.PAID.value}

EMPTY_WALLET = {
    "pending_amount": 0,
    "upcoming_payout": 0,
    "completed_payout": 0,
    "total_earnings": 0,
    "last_payout_date": None,
    "last_payout_amount": 0,
    "next_payout_date": None,
    "stats": WalletStats().model_dump(),
}


def _net_earning(order: dict) -> float:
    return (order.get("earnings") or {}).get("net_seller_earning") or 0


def classify_order(
    order: dict,
    now: datetime,
    return_window_days: int = RETURN_WINDOW_DAYS,
) -> str | None:
    """
    Bucket for one order, or None when it does not count towards the
    pending/upcoming balance (not delivered, nothing earned, or claimed).
    """
    if order.get("status") != OrderStatus.DELIVERED.value:
        return None
    if _net_earning(order) <= 0:
        return None
    if (order.get("payout") or {}).get("status") in CLAIMED_PAYOUT_STATES:
        return None

    delivered_at = order.get("delivered_at")
    if not delivered_at:
        return None

    elapsed_days = (now - delivered_at).total_seconds() / SECONDS_PER_DAY
    if elapsed_days < return_window_days:
        return BUCKET_PENDING
    return BUCKET_UPCOMING


def build_wallet_snapshot(
    orders,
    completed_transactions,
    *,
    now: datetime,
    return_window_days: int = RETURN_WINDOW_DAYS,
    stats: WalletStats | None = None,
) -> WalletSnapshot:
    """
    (orders, completed payout transactions) -> wallet. Pure; the previous
    wallet value is never an input.
    """
    pending, upcoming = [], []
    pending_ids, upcoming_ids = [], []
    next_payout_date = None

    for order in orders:
        bucket = classify_order(order, now, return_window_days)
        if bucket == BUCKET_PENDING:
            pending.append(_net_earning(order))
            pending_ids.append(str(order["_id"]))
            matures_at = order["delivered_at"] + timedelta(days=return_window_days)
            if next_payout_date is None or matures_at < next_payout_date:
                next_payout_date = matures_at
        elif bucket == BUCKET_UPCOMING:
            upcoming.append(_net_earning(order))
            upcoming_ids.append(str(order["_id"]))

    completed = [txn.get("amount") or 0 for txn in completed_transactions]

    last_payout = None
    for txn in completed_transactions:
        at = txn.get("completed_at")
        if at and (last_payout is None or at > last_payout.get("completed_at")):
            last_payout = txn

    pending_amount = sum_money(pending)
    upcoming_payout = sum_money(upcoming)
    completed_payout = sum_money(completed)

    return WalletSnapshot(
        pending_amount=pending_amount,
        upcoming_payout=upcoming_payout,
        completed_payout=completed_payout,
        total_earnings=round_money(pending_amount + upcoming_payout + completed_payout),
        last_payout_date=last_payout.get("completed_at") if last_payout else None,
        last_payout_amount=round_money(last_payout.get("amount")) if last_payout else 0,
        next_payout_date=next_payout_date,
        pending_order_ids=pending_ids,
        upcoming_order_ids=upcoming_ids,
        stats=stats or WalletStats(),
    )


# ==============================
# Get-or-create
# ==============================

async def get_or_create_wallet(db, seller_id, now: datetime | None = None) -> dict:
    seller_oid = parse_object_id(seller_id, "seller_id")
    now = now or datetime.utcnow()

    wallet = await db[SELLER_WALLETS].find_one({"seller_id": seller_oid})
    if wallet:
        return wallet

    try:
        await db[SELLER_WALLETS].update_one(
            {"seller_id": seller_oid},
            {"$setOnInsert": {**EMPTY_WALLET, "seller_id": seller_oid, "created_at": now, "refreshed_at": None}},
            upsert=True,
        )
    except DuplicateKeyError:
        # Concurrent refresh created it first
        pass

    return await db[SELLER_WALLETS].find_one({"seller_id": seller_oid})


# ==============================
# Refresh (recompute on read)
# ==============================

async def _wallet_stats(db, seller_oid) -> WalletStats:
    return WalletStats(
        total_orders=await db[ORDERS].count_documents({"seller_id": seller_oid}),
        delivered_orders=await db[ORDERS].count_documents(
            {"seller_id": seller_oid, "status": OrderStatus.DELIVERED.value}
        ),
        returned_orders=await db[ORDERS].count_documents(
            {
                "seller_id": seller_oid,
                "status": {"$in": [OrderStatus.RETURNED.value, OrderStatus.REFUNDED.value]},
            }
        ),
    )


async def _promote_matured_orders(db, order_ids) -> int:
    if not order_ids:
        return 0
    res = await db[ORDERS].update_many(
        {
            "_id": {"$in": [parse_object_id(oid) for oid in order_ids]},
            "payout.status": PayoutStatus.HELD.value,
        },
        {"$set": {"payout.status": PayoutStatus.READY.value}},
    )
    return res.modified_count


async def refresh_wallet(
    db,
    seller_id,
    *,
    now: datetime | None = None,
    return_window_days: int = RETURN_WINDOW_DAYS,
) -> dict:
    """
    Rebuild a seller's wallet from orders and payout transactions and
    overwrite the stored copy in one update. Safe to run repeatedly or
    concurrently: every run converges on the same figures.
    """
    seller_oid = parse_object_id(seller_id, "seller_id")
    now = now or datetime.utcnow()

    await get_or_create_wallet(db, seller_oid, now)

    orders = await db[ORDERS].find(
        {
            "seller_id": seller_oid,
            "status": OrderStatus.DELIVERED.value,
            "earnings.net_seller_earning": {"$gt": 0},
            "payout.status": {"$nin": sorted(CLAIMED_PAYOUT_STATES)},
        }
    ).to_list(None)

    completed = await db[PAYOUT_TRANSACTIONS].find(
        {"seller_id": seller_oid, "status": TransactionStatus.COMPLETED.value}
    ).to_list(None)

    snapshot = build_wallet_snapshot(
        orders,
        completed,
        now=now,
        return_window_days=return_window_days,
        stats=await _wallet_stats(db, seller_oid),
    )

    promoted = await _promote_matured_orders(db, snapshot.upcoming_order_ids)

    fields = snapshot.model_dump(exclude={"pending_order_ids", "upcoming_order_ids"})
    wallet = await db[SELLER_WALLETS].find_one_and_update(
        {"seller_id": seller_oid},
        {"$set": {**fields, "refreshed_at": now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )

    logger.info(
        "WALLET_REFRESHED seller=%s pending=%s upcoming=%s completed=%s promoted=%s",
        seller_oid,
        snapshot.pending_amount,
        snapshot.upcoming_payout,
        snapshot.completed_payout,
        promoted,
    )
    return wallet
