"""
backend/lumilink/database.py

Purpose:
    MongoDB connection bootstrap and index management for the badge engine
    collections. The unique award index is the durable arbiter of at-most-once
    badge grants across worker processes.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - lumilink.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, OperationFailure

from lumilink.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("lumilink.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=1,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def get_db() -> AsyncIOMotorDatabase:
    return db


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent; safe to run repeatedly."""

    # ---- Badge awards (one record per user and badge) ----
    try:
        await db.badge_awards.create_index(
            [("user_id", 1), ("badge_key", 1)],
            unique=True,
            name="uq_user_badge",
        )
    except (DuplicateKeyError, OperationFailure) as exc:
        # Award _id is derived from (user_id, badge_key), so inserts stay
        # unique even while the compound index cannot be built.
        logger.warning("Skipped unique badge_awards index due to duplicate data: %s", exc)
    await db.badge_awards.create_index([("user_id", 1), ("awarded_at", 1)])
    await db.badge_awards.create_index("badge_key")

    # ---- Notification inbox for the presentation layer ----
    await db.badge_notifications.create_index([("user_id", 1), ("seen", 1), ("awarded_at", -1)])

    # ---- Metric source lookups (collections owned by profile/link storage) ----
    await db.profiles.create_index("user_id")
    await db.links.create_index([("profile_id", 1), ("is_social", 1)])
    await db.links.create_index("updated_at")
    await db.profiles.create_index("updated_at")
    await db.analytics_summary.create_index("profile_id")
    await db.analytics_summary.create_index("updated_at")
    await db.users.create_index("is_deleted")

    logger.info("MongoDB indexes ensured")
