"""Persistent worker state: tracks synced_at per worker across restarts.

Uses a lightweight `worker_state` collection in MongoDB so the sweep can tell
whether anything changed since its last run.
"""

from datetime import datetime

import lumilink.database as _db
from lumilink.utils import utcnow


async def get_synced_at(worker_id: str) -> datetime | None:
    """Get the last synced_at timestamp for a worker."""
    doc = await _db.db.worker_state.find_one({"_id": worker_id})
    return doc["synced_at"] if doc else None


async def set_synced(worker_id: str, when: datetime | None = None) -> None:
    """Mark a worker as synced at ``when`` (default: now)."""
    await _db.db.worker_state.update_one(
        {"_id": worker_id},
        {"$set": {"synced_at": when or utcnow()}},
        upsert=True,
    )
