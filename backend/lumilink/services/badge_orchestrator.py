"""
backend/lumilink/services/badge_orchestrator.py

Purpose:
    Drives one badge evaluation pass for a user in response to an activity
    event: reads held badges, evaluates every un-held catalog entry in catalog
    order against a pass-scoped metric snapshot, and commits qualifying awards
    through the ledger. Failures affect only the badge being checked.

Dependencies:
    - lumilink.services.badge_catalog
    - lumilink.services.metric_aggregator
    - lumilink.services.award_ledger
    - lumilink.services.rule_evaluator
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lumilink.logging_config import log_structured
from lumilink.models.badge import AwardRecord, BadgeAwardPayload
from lumilink.services.award_ledger import AwardLedger, LedgerUnavailable
from lumilink.services.badge_catalog import BadgeCatalog
from lumilink.services.metric_aggregator import MetricAggregator, MetricSourceUnavailable
from lumilink.services.rule_evaluator import evaluate

logger = logging.getLogger("lumilink.badge_orchestrator")


@dataclass
class PassReport:
    user_id: str
    event_kind: str
    granted: list[AwardRecord] = field(default_factory=list)
    checked: int = 0
    skipped_metrics: list[str] = field(default_factory=list)
    skipped_ledger: list[str] = field(default_factory=list)
    lost_race: list[str] = field(default_factory=list)
    held_unavailable: bool = False

    @property
    def degraded(self) -> bool:
        return bool(self.skipped_metrics or self.skipped_ledger or self.held_unavailable)


class BadgeOrchestrator:
    def __init__(
        self,
        catalog: BadgeCatalog,
        aggregator: MetricAggregator,
        ledger: AwardLedger,
    ) -> None:
        self.catalog = catalog
        self.aggregator = aggregator
        self.ledger = ledger

    async def on_activity_event(self, user_id: str, event_kind: str) -> list[AwardRecord]:
        """Evaluate un-held badges for ``user_id``; return awards granted by this pass."""
        report = await self.run_pass(user_id, event_kind)
        return report.granted

    async def run_pass(self, user_id: str, event_kind: str) -> PassReport:
        report = PassReport(user_id=user_id, event_kind=event_kind)

        try:
            held = await self.ledger.held_badge_keys(user_id)
        except LedgerUnavailable as exc:
            # try_award still arbitrates duplicates, so evaluate everything.
            logger.warning("Held badges unavailable for user=%s (%s); checking full catalog", user_id, exc)
            held = set()
            report.held_unavailable = True

        snapshot = self.aggregator.begin_pass(user_id)

        for definition in self.catalog.list_definitions():
            if definition.key in held or definition.manual_only:
                continue
            report.checked += 1

            try:
                metrics = await snapshot.require(definition.metrics())
            except MetricSourceUnavailable as exc:
                logger.warning(
                    "Skipping badge %s for user=%s event=%s: %s",
                    definition.key, user_id, event_kind, exc,
                )
                report.skipped_metrics.append(definition.key)
                continue

            if not evaluate(definition, metrics):
                continue

            try:
                result = await self.ledger.try_award(user_id, definition.key)
            except LedgerUnavailable as exc:
                logger.warning(
                    "Skipping badge %s for user=%s event=%s: %s",
                    definition.key, user_id, event_kind, exc,
                )
                report.skipped_ledger.append(definition.key)
                continue

            if result.granted and result.record is not None:
                report.granted.append(result.record)
            else:
                report.lost_race.append(definition.key)

        log_structured(
            logger,
            logging.WARNING if report.degraded else logging.DEBUG,
            msg="badge_pass",
            user_id=user_id,
            event_kind=event_kind,
            checked=report.checked,
            granted=[r.badge_key for r in report.granted],
            skipped_metrics=report.skipped_metrics,
            skipped_ledger=report.skipped_ledger,
            lost_race=report.lost_race,
        )
        return report

    def to_payload(self, record: AwardRecord) -> BadgeAwardPayload:
        return award_payload(self.catalog, record)


def award_payload(catalog: BadgeCatalog, record: AwardRecord) -> BadgeAwardPayload:
    definition = catalog.get(record.badge_key)
    if definition is None:
        raise KeyError(record.badge_key)
    return BadgeAwardPayload(
        user_id=record.user_id,
        badge_key=record.badge_key,
        rarity=definition.rarity,
        awarded_at=record.awarded_at,
    )
