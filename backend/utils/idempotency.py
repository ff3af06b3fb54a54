from datetime import datetime
from pymongo.errors import DuplicateKeyError

from utils.errors import Conflict

IDEMPOTENCY_TTL_SECONDS = 60 * 60 * 24  # 24 hours
IN_PROGRESS_STALE_SECONDS = 60 * 10     # 10 minutes


async def reserve_idempotency_key(
    *,
    db,
    key: str,
    scope: str,
    now: datetime | None = None,
):
    """
    Reserve a key before doing the work.

    Returns the stored response when the key already completed, None when
    the caller now owns the key. A live reservation held by another request
    raises Conflict; a stale or failed one is expired and taken over.
    """
    now = now or datetime.utcnow()
    existing = await db.idempotency_keys.find_one({"key": key, "scope": scope})

    if existing:
        if existing.get("status") == "completed":
            return existing.get("response")

        created_at = existing.get("created_at")
        age_seconds = (now - created_at).total_seconds() if created_at else 0
        if age_seconds <= IN_PROGRESS_STALE_SECONDS and existing.get("status") == "reserved":
            raise Conflict("Request already in progress")

        await db.idempotency_keys.delete_one({"_id": existing["_id"]})

    try:
        await db.idempotency_keys.insert_one({
            "key": key,
            "scope": scope,
            "status": "reserved",
            "response": None,
            "created_at": now,
        })
    except DuplicateKeyError:
        # Concurrent request won the race
        concurrent = await db.idempotency_keys.find_one({"key": key, "scope": scope})
        if concurrent and concurrent.get("status") == "completed":
            return concurrent.get("response")
        raise Conflict("Request already in progress")
    return None


async def complete_idempotency_key(*, db, key: str, scope: str, response: dict):
    await db.idempotency_keys.update_one(
        {"key": key, "scope": scope},
        {
            "$set": {
                "status": "completed",
                "response": response,
                "completed_at": datetime.utcnow(),
            }
        },
    )


async def fail_idempotency_key(*, db, key: str, scope: str, error: str):
    """Mark the key failed so an explicit retry can take it over."""
    await db.idempotency_keys.update_one(
        {"key": key, "scope": scope},
        {
            "$set": {
                "status": "failed",
                "error": error,
                "failed_at": datetime.utcnow(),
            }
        },
    )
