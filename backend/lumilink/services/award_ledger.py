"""
backend/lumilink/services/award_ledger.py

Purpose:
    Durable record of badges held by users. Grants are an atomic
    insert-if-absent against MongoDB: the award _id is derived from
    (user_id, badge_key) and a unique compound index backs it, so concurrent
    grants from independent workers resolve to exactly one winner.

Dependencies:
    - motor (through lumilink.database)
    - pymongo
    - lumilink.models.badge
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from pymongo.errors import DuplicateKeyError, PyMongoError

import lumilink.database as _db
from lumilink.models.badge import AwardRecord, AwardResult, AwardSource
from lumilink.utils import utcnow

logger = logging.getLogger("lumilink.award_ledger")

T = TypeVar("T")


class LedgerUnavailable(Exception):
    """Raised when the award store cannot be read or written within the timeout."""


def award_id(user_id: str, badge_key: str) -> str:
    return f"{user_id}:{badge_key}"


class AwardLedger:
    def __init__(self, *, timeout_seconds: float) -> None:
        self._timeout = max(0.001, float(timeout_seconds))

    async def _call(self, op: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except DuplicateKeyError:
            raise
        except asyncio.TimeoutError as exc:
            raise LedgerUnavailable(f"{op} timed out after {self._timeout}s") from exc
        except PyMongoError as exc:
            raise LedgerUnavailable(f"{op} failed: {exc}") from exc

    async def has_award(self, user_id: str, badge_key: str) -> bool:
        doc = await self._call(
            "has_award",
            _db.db.badge_awards.find_one({"_id": award_id(user_id, badge_key)}, {"_id": 1}),
        )
        return doc is not None

    async def held_badge_keys(self, user_id: str) -> set[str]:
        docs = await self._call(
            "held_badge_keys",
            _db.db.badge_awards.find({"user_id": user_id}, {"badge_key": 1}).to_list(length=None),
        )
        return {d["badge_key"] for d in docs}

    async def try_award(
        self,
        user_id: str,
        badge_key: str,
        *,
        source: AwardSource = "evaluation",
    ) -> AwardResult:
        """Create the award unless it already exists.

        Returns ``granted=False`` (no error) when another caller got there first.
        """
        record = AwardRecord(user_id=user_id, badge_key=badge_key, awarded_at=utcnow(), source=source)
        doc = {"_id": award_id(user_id, badge_key), **record.model_dump()}
        try:
            await self._call("try_award", _db.db.badge_awards.insert_one(doc))
        except DuplicateKeyError:
            logger.debug("Award already held: user=%s badge=%s", user_id, badge_key)
            return AwardResult(granted=False, record=None)
        logger.info("Badge awarded: %s -> %s (%s)", user_id, badge_key, source)
        return AwardResult(granted=True, record=record)

    async def list_awards(self, user_id: str) -> list[AwardRecord]:
        docs = await self._call(
            "list_awards",
            _db.db.badge_awards.find({"user_id": user_id}).sort("awarded_at", 1).to_list(length=None),
        )
        return [AwardRecord.from_doc(d) for d in docs]

    async def revoke(self, user_id: str, badge_key: str) -> bool:
        """Administrative removal; never called by evaluation."""
        result = await self._call(
            "revoke",
            _db.db.badge_awards.delete_one({"_id": award_id(user_id, badge_key)}),
        )
        removed = result.deleted_count > 0
        if removed:
            logger.warning("Badge revoked by admin: %s -> %s", user_id, badge_key)
        return removed

    async def owner_counts(self) -> dict[str, int]:
        rows = await self._call(
            "owner_counts",
            _db.db.badge_awards.aggregate([
                {"$group": {"_id": "$badge_key", "owners": {"$sum": 1}}},
            ]).to_list(length=None),
        )
        return {str(r["_id"]): int(r.get("owners", 0)) for r in rows}

    async def leaderboard(self, limit: int) -> list[dict[str, Any]]:
        pipeline = [
            {"$group": {
                "_id": "$user_id",
                "badge_count": {"$sum": 1},
                "last_awarded_at": {"$max": "$awarded_at"},
            }},
            {"$sort": {"badge_count": -1, "last_awarded_at": 1, "_id": 1}},
            {"$limit": int(limit)},
        ]
        return await self._call(
            "leaderboard",
            _db.db.badge_awards.aggregate(pipeline).to_list(length=int(limit)),
        )
