from bson import ObjectId

from config.constants import CATEGORIES, MAX_COMMISSION_PERCENT, PRODUCTS, SELLERS
from config.env import DEFAULT_COMMISSION_PERCENT


def _positive(value) -> float | None:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def resolve_commission_percent(
    category: dict | None,
    seller: dict | None,
    default_percent: float = DEFAULT_COMMISSION_PERCENT,
) -> float:
    """
    Category commission wins, then the seller's, then the platform default.
    Zero or missing values fall through to the next level.
    """
    percent = _positive((category or {}).get("commission"))
    if percent is None:
        percent = _positive((seller or {}).get("commission_percent"))
    if percent is None:
        percent = float(default_percent or 0)

    return min(max(percent, 0.0), float(MAX_COMMISSION_PERCENT))


def _as_object_id(value):
    if isinstance(value, ObjectId) or value is None:
        return value
    return ObjectId(value) if ObjectId.is_valid(value) else value


async def lookup_commission_percent(
    db,
    order: dict,
    default_percent: float = DEFAULT_COMMISSION_PERCENT,
) -> float:
    category = None
    items = order.get("items") or []

    if items:
        product = await db[PRODUCTS].find_one({"_id": _as_object_id(items[0].get("product_id"))})
        category_id = (product or {}).get("category_id")
        if category_id is not None:
            category = await db[CATEGORIES].find_one({"_id": _as_object_id(category_id)})

    seller = await db[SELLERS].find_one({"_id": _as_object_id(order.get("seller_id"))})

    return resolve_commission_percent(category, seller, default_percent)
