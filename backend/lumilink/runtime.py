"""
backend/lumilink/runtime.py

Purpose:
    Engine bootstrap for the host process: logging, database, catalog load
    (fail fast), orchestrator construction, event handler registration, event
    bus and optional sweep scheduler. Also the host-facing entry point for
    reporting user activity.

Dependencies:
    - apscheduler
    - lumilink.database
    - lumilink.services.*
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from lumilink.config import settings
from lumilink.database import close_db, connect_db
from lumilink.logging_config import setup_logging
from lumilink.models.badge import AwardRecord
from lumilink.services.award_ledger import AwardLedger
from lumilink.services.badge_catalog import BadgeCatalog
from lumilink.services.badge_orchestrator import BadgeOrchestrator
from lumilink.services.badge_service import BadgeService
from lumilink.services.event_bus import InMemoryEventBus, event_bus
from lumilink.services.event_handlers import register_event_handlers
from lumilink.services.event_handlers.badge_handlers import dispatch_awards
from lumilink.services.event_models import ActivityKind, ActivityRecordedEvent
from lumilink.services.metric_aggregator import MetricAggregator, MetricSource, MongoMetricSource

logger = logging.getLogger("lumilink")

_SWEEP_JOB_ID = "badge_engine"


@dataclass
class EngineRuntime:
    catalog: BadgeCatalog
    orchestrator: BadgeOrchestrator
    service: BadgeService
    bus: InMemoryEventBus | None
    scheduler: AsyncIOScheduler | None


def build_engine(
    catalog: BadgeCatalog,
    *,
    metric_source: MetricSource | None = None,
    bus: InMemoryEventBus | None = None,
) -> tuple[BadgeOrchestrator, BadgeService]:
    aggregator = MetricAggregator(
        metric_source or MongoMetricSource(),
        catalog.referenced_metrics(),
        timeout_seconds=settings.METRIC_SOURCE_TIMEOUT_SECONDS,
    )
    ledger = AwardLedger(timeout_seconds=settings.LEDGER_TIMEOUT_SECONDS)
    return BadgeOrchestrator(catalog, aggregator, ledger), BadgeService(catalog, ledger, aggregator, bus=bus)


async def start_engine(*, catalog: BadgeCatalog | None = None) -> EngineRuntime:
    setup_logging()
    # CatalogLoadError propagates: the process must not serve evaluations.
    catalog = catalog or BadgeCatalog.load_default()
    await connect_db()
    bus = event_bus if settings.EVENT_BUS_ENABLED else None
    orchestrator, service = build_engine(catalog, bus=bus)

    if bus is not None:
        register_event_handlers(bus, orchestrator)
        await bus.start()
        logger.info("Event bus enabled")
    else:
        logger.info("Event bus disabled via config; activity is evaluated inline")

    scheduler: AsyncIOScheduler | None = None
    if settings.BADGE_SWEEP_ENABLED:
        from lumilink.workers.badge_engine import check_badges

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            check_badges,
            "interval",
            id=_SWEEP_JOB_ID,
            replace_existing=True,
            minutes=settings.BADGE_SWEEP_INTERVAL_MINUTES,
            args=[orchestrator, bus],
        )
        scheduler.start()
        logger.info("Badge sweep scheduled every %d minutes", settings.BADGE_SWEEP_INTERVAL_MINUTES)

    return EngineRuntime(
        catalog=catalog,
        orchestrator=orchestrator,
        service=service,
        bus=bus,
        scheduler=scheduler,
    )


async def stop_engine(runtime: EngineRuntime) -> None:
    if runtime.scheduler is not None and runtime.scheduler.running:
        runtime.scheduler.shutdown(wait=False)
    if runtime.bus is not None:
        await runtime.bus.stop()
    await close_db()
    logger.info("Badge engine stopped")


async def record_activity(
    runtime: EngineRuntime,
    user_id: str,
    kind: ActivityKind,
    *,
    source: str = "host",
) -> list[AwardRecord]:
    """Report user activity.

    With the event bus running the evaluation happens asynchronously and an
    empty list is returned; otherwise the pass runs inline and its new awards
    are returned (and queued as notifications).
    """
    event = ActivityRecordedEvent(source=source, user_id=user_id, kind=kind)
    if runtime.bus is not None and runtime.bus.running:
        await runtime.bus.publish(event)
        return []

    records = await runtime.orchestrator.on_activity_event(user_id, kind)
    await dispatch_awards(runtime.catalog, records, correlation_id=event.correlation_id)
    return records
