from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def user_lookup_filter(user_id: str) -> dict:
    """Match a users document by its string id, whether stored as ObjectId or str."""
    try:
        return {"_id": {"$in": [ObjectId(user_id), user_id]}}
    except (InvalidId, TypeError):
        return {"_id": user_id}
