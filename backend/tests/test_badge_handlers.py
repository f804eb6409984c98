"""
backend/tests/test_badge_handlers.py

Purpose:
    Event-driven flow: activity events run an evaluation pass, new awards are
    republished as badge.awarded and land once in the notification inbox.
"""

from __future__ import annotations

import asyncio

import pytest

from lumilink.services.award_ledger import AwardLedger
from lumilink.services.badge_catalog import BadgeCatalog
from lumilink.services.badge_orchestrator import BadgeOrchestrator
from lumilink.services.event_bus import InMemoryEventBus
from lumilink.services.event_handlers import register_event_handlers
from lumilink.services.event_handlers.badge_handlers import (
    dispatch_awards,
    handle_badge_awarded,
    make_activity_handler,
)
from lumilink.services.event_models import ActivityRecordedEvent, BadgeAwardedEvent
from lumilink.services.metric_aggregator import MetricAggregator
from lumilink.utils import utcnow


class _Metrics:
    def __init__(self, **values: float) -> None:
        self.values = values

    async def get_metric(self, user_id: str, metric_name: str) -> float:
        return self.values.get(metric_name, 0)


class _RecordingBus:
    def __init__(self, *, accepts: bool = True) -> None:
        self.running = True
        self.accepts = accepts
        self.published = []

    async def publish(self, event) -> bool:
        self.published.append(event)
        return self.accepts


def _orchestrator(**metrics: float) -> BadgeOrchestrator:
    catalog = BadgeCatalog.from_entries([
        {"key": "first-link", "name": "First Link", "rarity": "common", "rule": "link_count >= 1"},
        {"key": "click-collector", "name": "Click Collector", "rarity": "rare", "rule": "link_clicks >= 100"},
    ])
    aggregator = MetricAggregator(_Metrics(**metrics), catalog.referenced_metrics(), timeout_seconds=1.0)
    return BadgeOrchestrator(catalog, aggregator, AwardLedger(timeout_seconds=1.0))


@pytest.mark.asyncio
async def test_activity_handler_publishes_award_events(fake_db) -> None:
    bus = _RecordingBus()
    handler = make_activity_handler(_orchestrator(link_count=2, link_clicks=150), bus)
    event = ActivityRecordedEvent(source="test", correlation_id="corr-7", user_id="u1", kind="link_clicked")

    await handler(event)
    await handler(event)

    assert [e.badge_key for e in bus.published] == ["first-link", "click-collector"]
    assert all(e.correlation_id == "corr-7" for e in bus.published)
    assert [e.rarity.value for e in bus.published] == ["common", "rare"]


@pytest.mark.asyncio
async def test_award_notification_is_stored_once(fake_db) -> None:
    event = BadgeAwardedEvent(
        source="test",
        correlation_id="corr-8",
        user_id="u1",
        badge_key="first-link",
        rarity="common",
        awarded_at=utcnow(),
    )

    await handle_badge_awarded(event)
    await handle_badge_awarded(event.model_copy(update={"event_id": "evt-replay"}))

    doc = fake_db.badge_notifications.docs["u1:first-link"]
    assert len(fake_db.badge_notifications.docs) == 1
    assert doc["rarity"] == "common"
    assert doc["seen"] is False
    assert doc["correlation_id"] == "corr-8"


@pytest.mark.asyncio
async def test_bus_pipeline_from_activity_to_inbox(fake_db) -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    register_event_handlers(bus, _orchestrator(link_count=1))
    await bus.start()

    await bus.publish(ActivityRecordedEvent(source="test", user_id="u1", kind="link_created"))
    # Two hops: activity -> evaluation -> badge.awarded -> inbox.
    await asyncio.wait_for(bus.drain(), timeout=1)
    await bus.stop()

    assert set(fake_db.badge_awards.docs) == {"u1:first-link"}
    assert set(fake_db.badge_notifications.docs) == {"u1:first-link"}
    assert bus.stats()["failed_total"] == 0


@pytest.mark.asyncio
async def test_dispatch_falls_back_to_inbox_when_bus_refuses(fake_db) -> None:
    orchestrator = _orchestrator(link_count=1)
    records = await orchestrator.on_activity_event("u1", "link_created")
    bus = _RecordingBus(accepts=False)

    await dispatch_awards(orchestrator.catalog, records, bus=bus, correlation_id="corr-9")

    assert [e.badge_key for e in bus.published] == ["first-link"]
    assert fake_db.badge_notifications.docs["u1:first-link"]["correlation_id"] == "corr-9"


@pytest.mark.asyncio
async def test_dispatch_without_bus_writes_inbox(fake_db) -> None:
    orchestrator = _orchestrator(link_count=1, link_clicks=100)
    records = await orchestrator.on_activity_event("u1", "link_clicked")

    await dispatch_awards(orchestrator.catalog, records, source="badge_admin")

    assert set(fake_db.badge_notifications.docs) == {"u1:first-link", "u1:click-collector"}
