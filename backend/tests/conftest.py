from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from utils.indexes import ensure_indexes  # noqa: E402
from utils.order_lifecycle import build_order_document  # noqa: E402

NOW = datetime(2026, 10, 1, 12, 0, 0)


@pytest.fixture(autouse=True)
def _bank_encryption_key(monkeypatch) -> None:
    monkeypatch.setattr("utils.crypto.BANK_DATA_ENCRYPTION_KEY", "test-bank-data-key")


@pytest_asyncio.fixture
async def db() -> AsyncIterator:
    client = AsyncMongoMockClient()
    database = client[f"earnings_test_{ObjectId()}"]
    await ensure_indexes(database)
    yield database


def seller_doc(*, commission_percent: float = 0, bank_details: dict | None = None, verified: bool = True) -> dict:
    if bank_details is None:
        bank_details = {
            "account_holder_name": "Lovely Store",
            "bank_account_number": "123456789012",
            "ifsc_code": "HDFC0001234",
            "bank_name": "HDFC Bank",
            "upi_id": "lovely@upi",
            "is_verified": verified,
        }
    return {
        "_id": ObjectId(),
        "role": "seller",
        "commission_percent": commission_percent,
        "bank_details": bank_details,
    }


@pytest_asyncio.fixture
async def seller(db) -> dict:
    doc = seller_doc()
    await db.users.insert_one(doc)
    return doc


def order_doc(
    seller_id,
    *,
    price: float = 1000,
    quantity: int = 1,
    shipping_charge: float | None = 40,
    product_id=None,
    payment_method: str = "cod",
    now: datetime = NOW,
) -> dict:
    return build_order_document(
        order_number=f"ORD{ObjectId()}",
        buyer_id=ObjectId(),
        seller_id=seller_id,
        items=[
            {
                "product_id": str(product_id or ObjectId()),
                "seller_id": str(seller_id),
                "name": "Cotton Kurti",
                "price": price,
                "quantity": quantity,
            }
        ],
        shipping_charge=shipping_charge,
        payment_method=payment_method,
        now=now,
    )


async def insert_delivered_order(
    db,
    seller_id,
    *,
    net: float,
    days_ago: float,
    payout_status: str = "held",
    now: datetime = NOW,
) -> dict:
    """Delivered order with a precomputed earnings record."""
    delivered_at = now - timedelta(days=days_ago)
    doc = order_doc(seller_id, now=delivered_at - timedelta(days=2))
    doc["status"] = "delivered"
    doc["delivered_at"] = delivered_at
    doc["earnings"] = {
        "commission_percent": 10.0,
        "commission_amount": 0.0,
        "shipping_cost": 0.0,
        "cgst": 0.0,
        "sgst": 0.0,
        "total_tax": 0.0,
        "penalty": 0.0,
        "net_seller_earning": net,
        "calculated_at": delivered_at,
    }
    doc["payout"] = {
        "status": payout_status,
        "scheduled_date": delivered_at + timedelta(days=7),
        "completed_date": None,
        "transaction_id": None,
        "failure_reason": None,
    }
    await db.orders.insert_one(doc)
    return doc
