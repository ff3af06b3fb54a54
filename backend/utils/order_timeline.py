import logging
from datetime import datetime
from bson import ObjectId

logger = logging.getLogger(__name__)


async def record_order_event(
    db,
    *,
    order_id,
    event: str,
    actor_role: str,
    actor_id=None,
    metadata: dict | None = None,
    at: datetime | None = None,
):
    """
    Single source of truth for order timeline events.
    """

    doc = {
        "order_id": ObjectId(order_id),
        "event": event,
        "actor_role": actor_role,
        "actor_id": ObjectId(actor_id) if actor_id else None,
        "metadata": metadata or {},
        "created_at": at or datetime.utcnow(),
    }

    await db.order_timeline.insert_one(doc)


async def record_order_event_safe(db, **kwargs) -> bool:
    # Timeline must NEVER break the money path
    try:
        await record_order_event(db, **kwargs)
    except Exception:
        logger.exception("TIMELINE_ERROR order=%s event=%s", kwargs.get("order_id"), kwargs.get("event"))
        return False
    return True
