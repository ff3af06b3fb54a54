import logging
from datetime import datetime, timedelta

from bson import ObjectId
from pydantic import ValidationError

from config.constants import (
    CLAIM_STALE_SECONDS,
    ORDERS,
    PAYOUT_HISTORY_MAX_LIMIT,
    PAYOUT_TRANSACTION_PREFIX,
    PAYOUT_TRANSACTIONS,
    SELLERS,
)
from config.env import RETURN_WINDOW_DAYS
from models.order import OrderStatus, PayoutStatus
from models.payout import (
    PaymentDetails,
    PaymentMode,
    PayoutBreakdown,
    PayoutTransactionInDB,
    TransactionStatus,
)
from models.user import SellerInDB
from utils.crypto import decrypt_sensitive_value, encrypt_sensitive_value, mask_account_number
from utils.errors import Conflict, InvalidTransition, NoEligibleOrders, NotFound, ValidationFailed
from utils.guards import parse_object_id, parse_object_ids
from utils.idempotency import (
    complete_idempotency_key,
    fail_idempotency_key,
    reserve_idempotency_key,
)
from utils.money import sum_money
from utils.order_timeline import record_order_event_safe
from utils.serializers import serialize_order_earnings, serialize_payout_transaction
from utils.wallet_service import refresh_wallet

logger = logging.getLogger(__name__)

P = PayoutStatus
T = TransactionStatus

# ======================================================
# STATE GRAPHS
# ======================================================

# Order payout status. FAILED -> PROCESSING is a re-claim after the
# payment executor released the order.
PAYOUT_TRANSITIONS = {
    P.NOT_ELIGIBLE: {P.HELD},
    P.HELD: {P.READY, P.PROCESSING},
    P.READY: {P.PROCESSING},
    P.FAILED: {P.PROCESSING},
    P.PROCESSING: {P.PAID, P.FAILED},
    P.PAID: set(),
}

TRANSACTION_TRANSITIONS = {
    T.PENDING: {T.PROCESSING, T.COMPLETED, T.FAILED},
    T.PROCESSING: {T.COMPLETED, T.FAILED},
    T.COMPLETED: set(),
    T.FAILED: set(),
}


def payout_sources(target: PayoutStatus) -> list[str]:
    return sorted(src.value for src, targets in PAYOUT_TRANSITIONS.items() if target in targets)


CLAIMABLE_PAYOUT_STATES = payout_sources(P.PROCESSING)


# ======================================================
# ELIGIBILITY
# ======================================================

def eligibility_query(
    seller_oid: ObjectId,
    now: datetime,
    return_window_days: int = RETURN_WINDOW_DAYS,
) -> dict:
    return {
        "seller_id": seller_oid,
        "status": OrderStatus.DELIVERED.value,
        "earnings.net_seller_earning": {"$gt": 0},
        "payout.status": {"$in": CLAIMABLE_PAYOUT_STATES},
        "delivered_at": {"$lte": now - timedelta(days=return_window_days)},
    }


# ======================================================
# SNAPSHOTS
# ======================================================

def snapshot_payment_details(seller: dict, payment_mode: PaymentMode) -> PaymentDetails:
    """
    Copy the payout destination at request time. Later edits to the
    seller's bank record do not touch existing transactions.
    """
    try:
        bank = SellerInDB.model_validate(seller).bank_details
    except ValidationError:
        raise ValidationFailed("Seller payment details are malformed")

    if not bank:
        raise ValidationFailed("Please add bank details before requesting payout")
    if not bank.is_verified:
        raise ValidationFailed("Bank details are not verified")

    if payment_mode == PaymentMode.UPI:
        if not bank.upi_id:
            raise ValidationFailed("UPI id is missing for payout")
        return PaymentDetails(account_holder_name=bank.account_holder_name, upi_id=bank.upi_id)

    if payment_mode == PaymentMode.WALLET:
        return PaymentDetails(account_holder_name=bank.account_holder_name)

    encrypted = bank.bank_account_encrypted
    account_number = bank.bank_account_number
    if encrypted:
        account_number = decrypt_sensitive_value(encrypted)
    elif account_number:
        encrypted = encrypt_sensitive_value(account_number)
    else:
        raise ValidationFailed("Seller bank account is missing for payout")

    if not bank.ifsc_code:
        raise ValidationFailed("IFSC code is missing for payout")

    return PaymentDetails(
        account_holder_name=bank.account_holder_name,
        bank_account_masked=mask_account_number(account_number),
        bank_account_encrypted=encrypted,
        ifsc_code=bank.ifsc_code,
        bank_name=bank.bank_name,
        upi_id=bank.upi_id,
    )


def build_payout_breakdown(orders) -> PayoutBreakdown:
    sales, commission, tax, shipping, net = [], [], [], [], []
    for order in orders:
        earnings = order.get("earnings") or {}
        sales.append((order.get("pricing") or {}).get("items_total"))
        commission.append(earnings.get("commission_amount"))
        tax.append(earnings.get("total_tax"))
        shipping.append(earnings.get("shipping_cost"))
        net.append(earnings.get("net_seller_earning"))

    return PayoutBreakdown(
        total_orders=len(orders),
        total_sales=sum_money(sales),
        total_commission=sum_money(commission),
        total_tax=sum_money(tax),
        total_shipping=sum_money(shipping),
        net_amount=sum_money(net),
    )


def transaction_number(txn_id: ObjectId, now: datetime) -> str:
    return f"{PAYOUT_TRANSACTION_PREFIX}{now:%Y%m%d%H%M%S}{str(txn_id)[-8:].upper()}"


# ======================================================
# CLAIM THEN CREATE
# ======================================================

async def _insert_transaction(db, doc: dict):
    await db[PAYOUT_TRANSACTIONS].insert_one(doc)


async def _claim_orders(db, candidates, txn_id: ObjectId, now: datetime) -> list[ObjectId]:
    claimed = []
    for order in candidates:
        previous = (order.get("payout") or {}).get("status")
        res = await db[ORDERS].update_one(
            {
                "_id": order["_id"],
                "seller_id": order["seller_id"],
                "status": OrderStatus.DELIVERED.value,
                "payout.status": {"$in": CLAIMABLE_PAYOUT_STATES},
            },
            {
                "$set": {
                    "payout.status": P.PROCESSING.value,
                    "payout.transaction_id": txn_id,
                    "payout.claimed_at": now,
                    "payout.previous_status": previous,
                }
            },
        )
        if res.modified_count == 1:
            claimed.append(order["_id"])
    return claimed


async def _release_claims(db, claimed_orders, txn_id: ObjectId) -> int:
    released = 0
    for order in claimed_orders:
        previous = (order.get("payout") or {}).get("previous_status") or P.READY.value
        res = await db[ORDERS].update_one(
            {
                "_id": order["_id"],
                "payout.transaction_id": txn_id,
                "payout.status": P.PROCESSING.value,
            },
            {
                "$set": {"payout.status": previous},
                "$unset": {
                    "payout.transaction_id": "",
                    "payout.claimed_at": "",
                    "payout.previous_status": "",
                },
            },
        )
        released += res.modified_count
    return released


async def _claim_and_create(
    db,
    *,
    seller_oid: ObjectId,
    candidates: list[dict],
    payment_mode: PaymentMode,
    payment_details: PaymentDetails,
    now: datetime,
) -> dict:
    txn_id = ObjectId()
    created = False

    try:
        # 1. claim: each order flips to PROCESSING only if still claimable
        await _claim_orders(db, candidates, txn_id, now)

        # 2. verify: the transaction covers exactly what this request won
        claimed_orders = await db[ORDERS].find(
            {"seller_id": seller_oid, "payout.transaction_id": txn_id}
        ).to_list(None)
        if not claimed_orders:
            raise NoEligibleOrders()

        position = {o["_id"]: i for i, o in enumerate(candidates)}
        claimed_orders.sort(key=lambda o: position.get(o["_id"], len(position)))

        breakdown = build_payout_breakdown(claimed_orders)
        txn = PayoutTransactionInDB(
            transaction_number=transaction_number(txn_id, now),
            seller_id=seller_oid,
            orders=[o["_id"] for o in claimed_orders],
            payment_mode=payment_mode,
            payment_details=payment_details,
            amount=breakdown.net_amount,
            breakdown=breakdown,
            status=T.PENDING,
            initiated_at=now,
        )
        doc = {"_id": txn_id, **txn.model_dump()}

        # 3. create
        await _insert_transaction(db, doc)
        created = True
    finally:
        # Cancellation included: no claim may outlive a missing transaction
        if not created:
            orphaned = await db[ORDERS].find({"payout.transaction_id": txn_id}).to_list(None)
            if orphaned:
                logger.warning(
                    "PAYOUT_CREATE_ABORTED seller=%s txn=%s released=%s",
                    seller_oid,
                    txn_id,
                    len(orphaned),
                )
                await _release_claims(db, orphaned, txn_id)

    for order in claimed_orders:
        await record_order_event_safe(
            db,
            order_id=order["_id"],
            event="PAYOUT_CLAIMED",
            actor_role="seller",
            actor_id=seller_oid,
            metadata={"transaction_id": str(txn_id)},
            at=now,
        )

    return doc


async def _create_payout(
    db,
    seller_oid: ObjectId,
    order_oids: list[ObjectId],
    mode: PaymentMode,
    *,
    now: datetime,
    return_window_days: int,
) -> dict:
    seller = await db[SELLERS].find_one({"_id": seller_oid, "role": "seller"})
    if not seller:
        raise NotFound("Seller not found")

    payment_details = snapshot_payment_details(seller, mode)
    if not order_oids:
        raise NoEligibleOrders()

    query = eligibility_query(seller_oid, now, return_window_days)
    query["_id"] = {"$in": order_oids}
    candidates = await db[ORDERS].find(query).to_list(None)
    if not candidates:
        raise NoEligibleOrders()

    return await _claim_and_create(
        db,
        seller_oid=seller_oid,
        candidates=candidates,
        payment_mode=mode,
        payment_details=payment_details,
        now=now,
    )


async def request_payout(
    db,
    seller_id,
    order_ids,
    payment_mode: str = PaymentMode.BANK.value,
    *,
    now: datetime | None = None,
    return_window_days: int = RETURN_WINDOW_DAYS,
    idempotency_key: str | None = None,
) -> dict:
    """
    Claim the seller's eligible orders into one pending payout transaction.

    Rejects the whole request, without writing anything, when the seller has
    no verified payment details or none of the orders qualify. A repeated
    idempotency key returns the first response.
    """
    now = now or datetime.utcnow()
    seller_oid = parse_object_id(seller_id, "seller_id")

    try:
        mode = PaymentMode(payment_mode)
    except ValueError:
        raise ValidationFailed(f"Invalid payment mode: {payment_mode}")

    order_oids = parse_object_ids(order_ids, "order_id")

    scope = f"payout_request:{seller_oid}"
    if idempotency_key:
        cached = await reserve_idempotency_key(db=db, key=idempotency_key, scope=scope, now=now)
        if cached is not None:
            return cached

    try:
        txn = await _create_payout(
            db,
            seller_oid,
            order_oids,
            mode,
            now=now,
            return_window_days=return_window_days,
        )
    except BaseException as e:
        if idempotency_key:
            await fail_idempotency_key(
                db=db,
                key=idempotency_key,
                scope=scope,
                error=str(getattr(e, "detail", e)),
            )
        raise

    response = serialize_payout_transaction(txn)
    if idempotency_key:
        await complete_idempotency_key(db=db, key=idempotency_key, scope=scope, response=response)

    logger.info(
        "PAYOUT_REQUESTED seller=%s txn=%s orders=%s amount=%s",
        seller_oid,
        txn["transaction_number"],
        len(txn["orders"]),
        txn["amount"],
    )
    return response


# ======================================================
# SETTLEMENT HOOKS (called by the payment executor)
# ======================================================

async def _get_transaction(db, transaction_id) -> dict:
    txn = await db[PAYOUT_TRANSACTIONS].find_one(
        {"_id": parse_object_id(transaction_id, "transaction_id")}
    )
    if not txn:
        raise NotFound("Payout transaction not found")
    return txn


async def _advance_transaction(db, txn: dict, target: TransactionStatus, fields: dict) -> None:
    current = TransactionStatus(txn["status"])
    if target not in TRANSACTION_TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value)

    res = await db[PAYOUT_TRANSACTIONS].update_one(
        {"_id": txn["_id"], "status": current.value},
        {"$set": {"status": target.value, **fields}},
    )
    if res.modified_count != 1:
        raise Conflict("Payout transaction changed concurrently, retry")


async def mark_payout_processing(db, transaction_id, *, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    txn = await _get_transaction(db, transaction_id)
    await _advance_transaction(db, txn, T.PROCESSING, {"processed_at": now})
    logger.info("PAYOUT_PROCESSING txn=%s", txn["_id"])
    return serialize_payout_transaction(await _get_transaction(db, txn["_id"]))


async def complete_payout(
    db,
    transaction_id,
    *,
    gateway_transaction_id: str | None = None,
    processed_by: str | None = None,
    return_window_days: int = RETURN_WINDOW_DAYS,
    now: datetime | None = None,
) -> dict:
    now = now or datetime.utcnow()
    txn = await _get_transaction(db, transaction_id)

    # Re-running on a completed transaction only finishes the order writes
    if txn["status"] != T.COMPLETED.value:
        await _advance_transaction(
            db,
            txn,
            T.COMPLETED,
            {
                "completed_at": now,
                "processed_at": txn.get("processed_at") or now,
                "gateway_transaction_id": gateway_transaction_id,
                "processed_by": processed_by,
            },
        )

    res = await db[ORDERS].update_many(
        {
            "_id": {"$in": txn["orders"]},
            "payout.transaction_id": txn["_id"],
            "payout.status": {"$in": payout_sources(P.PAID)},
        },
        {
            "$set": {
                "payout.status": P.PAID.value,
                "payout.completed_date": now,
            }
        },
    )

    logger.info("PAYOUT_COMPLETED txn=%s orders=%s amount=%s", txn["_id"], res.modified_count, txn["amount"])
    await refresh_wallet(db, txn["seller_id"], now=now, return_window_days=return_window_days)
    return serialize_payout_transaction(await _get_transaction(db, txn["_id"]))


async def fail_payout(
    db,
    transaction_id,
    reason: str,
    *,
    code: str | None = None,
    return_window_days: int = RETURN_WINDOW_DAYS,
    now: datetime | None = None,
) -> dict:
    """
    Mark the transaction failed and release its orders so they can be
    claimed by a new request.
    """
    now = now or datetime.utcnow()
    txn = await _get_transaction(db, transaction_id)

    if txn["status"] != T.FAILED.value:
        await _advance_transaction(
            db,
            txn,
            T.FAILED,
            {
                "failed_at": now,
                "failure_reason": reason,
                "failure_code": code,
            },
        )

    res = await db[ORDERS].update_many(
        {
            "_id": {"$in": txn["orders"]},
            "payout.transaction_id": txn["_id"],
            "payout.status": {"$in": payout_sources(P.FAILED)},
        },
        {
            "$set": {
                "payout.status": P.FAILED.value,
                "payout.failure_reason": reason,
            },
            "$unset": {
                "payout.transaction_id": "",
                "payout.claimed_at": "",
                "payout.previous_status": "",
            },
        },
    )

    logger.warning("PAYOUT_FAILED txn=%s released=%s reason=%s", txn["_id"], res.modified_count, reason)
    await refresh_wallet(db, txn["seller_id"], now=now, return_window_days=return_window_days)
    return serialize_payout_transaction(await _get_transaction(db, txn["_id"]))


async def release_orphaned_claims(
    db,
    *,
    seller_id=None,
    now: datetime | None = None,
    stale_seconds: int = CLAIM_STALE_SECONDS,
) -> int:
    """
    Release orders claimed by a transaction that was never stored, e.g.
    after the process died between claim and create. Recent claims are
    skipped so an in-flight request is not undone.
    """
    now = now or datetime.utcnow()

    query = {
        "payout.status": P.PROCESSING.value,
        "payout.transaction_id": {"$ne": None},
        "payout.claimed_at": {"$lte": now - timedelta(seconds=stale_seconds)},
    }
    if seller_id is not None:
        query["seller_id"] = parse_object_id(seller_id, "seller_id")

    claimed = await db[ORDERS].find(query).to_list(None)
    by_txn = {}
    for order in claimed:
        by_txn.setdefault(order["payout"]["transaction_id"], []).append(order)

    if not by_txn:
        return 0

    stored = await db[PAYOUT_TRANSACTIONS].find(
        {"_id": {"$in": list(by_txn)}},
        {"_id": 1},
    ).to_list(None)
    stored_ids = {t["_id"] for t in stored}

    released = 0
    for txn_id, orders in by_txn.items():
        if txn_id in stored_ids:
            continue
        released += await _release_claims(db, orders, txn_id)

    if released:
        logger.warning("PAYOUT_ORPHANS_RELEASED seller=%s released=%s", seller_id, released)
    return released


# ======================================================
# READ MODELS
# ======================================================

async def list_payable_orders(
    db,
    seller_id,
    *,
    now: datetime | None = None,
    return_window_days: int = RETURN_WINDOW_DAYS,
) -> dict:
    now = now or datetime.utcnow()
    seller_oid = parse_object_id(seller_id, "seller_id")

    orders = await (
        db[ORDERS]
        .find(eligibility_query(seller_oid, now, return_window_days))
        .sort("delivered_at", -1)
        .to_list(None)
    )

    return {
        "orders": [serialize_order_earnings(o) for o in orders],
        "total_amount": sum_money((o.get("earnings") or {}).get("net_seller_earning") for o in orders),
        "count": len(orders),
    }


async def list_payout_transactions(
    db,
    seller_id,
    *,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    seller_oid = parse_object_id(seller_id, "seller_id")
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), PAYOUT_HISTORY_MAX_LIMIT)

    query = {"seller_id": seller_oid}
    if status:
        try:
            query["status"] = TransactionStatus(status).value
        except ValueError:
            raise ValidationFailed(f"Invalid payout status: {status}")

    transactions = await (
        db[PAYOUT_TRANSACTIONS]
        .find(query)
        .sort("initiated_at", -1)
        .skip((page - 1) * limit)
        .limit(limit)
        .to_list(limit)
    )
    total = await db[PAYOUT_TRANSACTIONS].count_documents(query)

    return {
        "transactions": [serialize_payout_transaction(t) for t in transactions],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }
