from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure

from config.constants import ORDERS, PAYOUT_TRANSACTIONS, SELLER_WALLETS
from utils.idempotency import IDEMPOTENCY_TTL_SECONDS


def _normalize_key_pairs(keys):
    return [(k, v) for k, v in keys]


async def _create_index_safe(collection, keys, **kwargs):
    """
    Create index safely.
    If Mongo reports IndexOptionsConflict/IndexKeySpecsConflict for same key pattern,
    drop the conflicting index and recreate with desired options.
    """
    desired_key = _normalize_key_pairs(keys)
    desired_name = kwargs.get("name")
    try:
        await collection.create_index(keys, **kwargs)
        return
    except OperationFailure as e:
        if getattr(e, "code", None) not in {85, 86}:
            raise

        conflicting_names = []
        async for idx in collection.list_indexes():
            idx_key = _normalize_key_pairs(list(idx.get("key", {}).items()))
            if idx_key == desired_key:
                idx_name = idx.get("name")
                if idx_name and idx_name != desired_name:
                    conflicting_names.append(idx_name)

        for idx_name in conflicting_names:
            await collection.drop_index(idx_name)

        await collection.create_index(keys, **kwargs)


async def ensure_indexes(db):
    # Orders: wallet refresh and payout eligibility scans
    await _create_index_safe(
        db[ORDERS],
        [("order_number", ASCENDING)],
        name="orders_order_number_unique",
        unique=True,
        sparse=True,
    )
    await _create_index_safe(
        db[ORDERS],
        [("seller_id", ASCENDING), ("status", ASCENDING), ("payout.status", ASCENDING)],
        name="orders_seller_status_payout_idx",
    )
    await _create_index_safe(
        db[ORDERS],
        [("seller_id", ASCENDING), ("delivered_at", DESCENDING)],
        name="orders_seller_delivered_at_idx",
    )
    await _create_index_safe(
        db[ORDERS],
        [("payout.transaction_id", ASCENDING)],
        name="orders_payout_transaction_idx",
        sparse=True,
    )

    # Wallets: one per seller
    await _create_index_safe(
        db[SELLER_WALLETS],
        [("seller_id", ASCENDING)],
        name="seller_wallets_seller_unique",
        unique=True,
    )

    # Payout transactions
    await _create_index_safe(
        db[PAYOUT_TRANSACTIONS],
        [("seller_id", ASCENDING), ("initiated_at", DESCENDING)],
        name="payout_transactions_seller_initiated_at_idx",
    )
    await _create_index_safe(
        db[PAYOUT_TRANSACTIONS],
        [("seller_id", ASCENDING), ("status", ASCENDING)],
        name="payout_transactions_seller_status_idx",
    )
    await _create_index_safe(
        db[PAYOUT_TRANSACTIONS],
        [("transaction_number", ASCENDING)],
        name="payout_transactions_number_unique",
        unique=True,
    )

    # Idempotency
    await _create_index_safe(
        db.idempotency_keys,
        [("key", ASCENDING), ("scope", ASCENDING)],
        name="idempotency_key_scope_unique",
        unique=True,
    )
    await _create_index_safe(
        db.idempotency_keys,
        [("created_at", ASCENDING)],
        name="idempotency_ttl_idx",
        expireAfterSeconds=IDEMPOTENCY_TTL_SECONDS,
    )

    # Timeline
    await _create_index_safe(
        db.order_timeline,
        [("order_id", ASCENDING), ("created_at", ASCENDING)],
        name="order_timeline_order_created_at_idx",
    )
