"""
backend/lumilink/services/badge_service.py

Purpose:
    Read and administrative operations around the badge engine: catalog
    listing, per-user progress, leaderboard, rarity statistics, manual
    grants/revocations and the award notification inbox.

Dependencies:
    - lumilink.database
    - lumilink.services.award_ledger
    - lumilink.services.badge_catalog
    - lumilink.services.event_handlers.badge_handlers
    - lumilink.services.metric_aggregator
    - lumilink.services.rule_evaluator
"""

from __future__ import annotations

import logging
from typing import Any

import lumilink.database as _db
from lumilink.config import settings
from lumilink.models.badge import (
    BADGE_CATEGORIES,
    AwardRecord,
    AwardResult,
    BadgeCategory,
    BadgeCategoryInfo,
    BadgeDefinition,
    BadgeLeaderboardEntry,
    BadgeProgress,
    BadgeStat,
    UserBadgeSummary,
)
from lumilink.models.metric import MetricSnapshot
from lumilink.services.award_ledger import AwardLedger
from lumilink.services.badge_catalog import BadgeCatalog
from lumilink.services.event_bus import InMemoryEventBus
from lumilink.services.event_handlers.badge_handlers import dispatch_awards
from lumilink.services.metric_aggregator import MetricAggregator, MetricSourceUnavailable
from lumilink.services.rule_evaluator import primary_threshold, progress_pct

logger = logging.getLogger("lumilink.badge_service")


class BadgeNotFound(KeyError):
    """Raised when an operation names a badge key that is not in the catalog."""


class BadgeService:
    def __init__(
        self,
        catalog: BadgeCatalog,
        ledger: AwardLedger,
        aggregator: MetricAggregator,
        *,
        bus: InMemoryEventBus | None = None,
    ) -> None:
        self.catalog = catalog
        self.ledger = ledger
        self.aggregator = aggregator
        self.bus = bus

    def list_catalog(self, category: BadgeCategory | str | None = None) -> list[BadgeDefinition]:
        if category is None:
            return list(self.catalog.list_definitions())
        return list(self.catalog.by_category(category))

    @staticmethod
    def list_categories() -> list[BadgeCategoryInfo]:
        return list(BADGE_CATEGORIES)

    async def get_user_badges(self, user_id: str) -> UserBadgeSummary:
        awards = {a.badge_key: a for a in await self.ledger.list_awards(user_id)}
        snapshot: MetricSnapshot | None
        try:
            snapshot = await self.aggregator.snapshot(user_id)
        except MetricSourceUnavailable as exc:
            logger.warning("Progress metrics unavailable for user=%s: %s", user_id, exc)
            snapshot = None

        badges = [
            self._progress_for(definition, awards.get(definition.key), snapshot)
            for definition in self.catalog.list_definitions()
        ]
        return UserBadgeSummary(
            user_id=user_id,
            badges=badges,
            earned_count=sum(1 for b in badges if b.is_completed),
            total_count=len(badges),
            metrics_available=snapshot is not None,
        )

    @staticmethod
    def _progress_for(
        definition: BadgeDefinition,
        award: AwardRecord | None,
        snapshot: MetricSnapshot | None,
    ) -> BadgeProgress:
        primary = primary_threshold(definition.rule)
        target = float(primary.value) if primary is not None else None
        current = snapshot.get(primary.metric) if (primary is not None and snapshot is not None) else 0.0

        if award is not None:
            pct = 100.0
        elif snapshot is not None and definition.rule is not None and not definition.manual_only:
            pct = progress_pct(definition.rule, snapshot)
        else:
            pct = 0.0

        return BadgeProgress(
            key=definition.key,
            name=definition.name,
            description=definition.description,
            icon=definition.icon,
            color=definition.color,
            category=definition.category,
            rarity=definition.rarity,
            current=current,
            target=target,
            progress_pct=pct,
            is_completed=award is not None,
            awarded_at=award.awarded_at if award is not None else None,
        )

    async def award_badge(self, user_id: str, badge_key: str) -> AwardResult:
        if badge_key not in self.catalog:
            raise BadgeNotFound(badge_key)
        result = await self.ledger.try_award(user_id, badge_key, source="admin")
        if result.granted and result.record is not None:
            await dispatch_awards(self.catalog, [result.record], bus=self.bus, source="badge_admin")
        return result

    async def revoke_badge(self, user_id: str, badge_key: str) -> bool:
        if badge_key not in self.catalog:
            raise BadgeNotFound(badge_key)
        removed = await self.ledger.revoke(user_id, badge_key)
        if removed:
            # Inbox ids match award ids; a later re-grant must be able to notify again.
            await _db.db.badge_notifications.delete_one({"_id": f"{user_id}:{badge_key}"})
        return removed

    async def get_badge_leaderboard(self, limit: int = 10) -> list[BadgeLeaderboardEntry]:
        limit = max(1, min(int(limit), settings.BADGE_LEADERBOARD_MAX))
        rows = await self.ledger.leaderboard(limit)
        return [
            BadgeLeaderboardEntry(
                rank=i + 1,
                user_id=str(row["_id"]),
                badge_count=int(row.get("badge_count", 0)),
                last_awarded_at=row.get("last_awarded_at"),
            )
            for i, row in enumerate(rows)
        ]

    async def get_badge_stats(self) -> list[BadgeStat]:
        total_users = await _db.db.users.count_documents({"is_deleted": {"$ne": True}}) or 1
        owners = await self.ledger.owner_counts()
        return [
            BadgeStat(
                key=d.key,
                rarity=d.rarity,
                owners=owners.get(d.key, 0),
                rarity_pct=round(owners.get(d.key, 0) * 100.0 / total_users, 2),
            )
            for d in self.catalog.list_definitions()
        ]


async def list_unseen_notifications(user_id: str, limit: int = 20) -> list[dict[str, Any]]:
    docs = await _db.db.badge_notifications.find(
        {"user_id": user_id, "seen": False},
        {"_id": 0, "correlation_id": 0},
    ).sort("awarded_at", -1).to_list(length=limit)
    return docs


async def mark_notifications_seen(user_id: str, badge_keys: list[str] | None = None) -> int:
    query: dict[str, Any] = {"user_id": user_id, "seen": False}
    if badge_keys:
        query["badge_key"] = {"$in": list(badge_keys)}
    result = await _db.db.badge_notifications.update_many(query, {"$set": {"seen": True}})
    return result.modified_count
