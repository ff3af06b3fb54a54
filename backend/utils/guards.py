from bson import ObjectId

from utils.errors import ValidationFailed

# -------------------------------
# ObjectId Guard
# -------------------------------

def parse_object_id(value, name: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except Exception:
        raise ValidationFailed(f"Invalid {name}")


def parse_object_ids(values, name: str = "id") -> list[ObjectId]:
    """Parse and de-duplicate, keeping the caller's order."""
    seen = set()
    parsed = []
    for value in values or []:
        oid = parse_object_id(value, name)
        if oid not in seen:
            seen.add(oid)
            parsed.append(oid)
    return parsed
