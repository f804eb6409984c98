"""
backend/lumilink/services/event_handlers/badge_handlers.py

Purpose:
    Subscribers wiring activity events to evaluation passes and new awards to
    the notification inbox read by the presentation layer, plus the shared
    award dispatch used by every path that grants badges. Evaluation is
    idempotent, so duplicated or replayed activity events are harmless.

Dependencies:
    - lumilink.database
    - lumilink.services.badge_orchestrator
    - lumilink.services.event_bus
    - lumilink.services.event_models
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable

from pymongo.errors import DuplicateKeyError

import lumilink.database as _db
from lumilink.models.badge import AwardRecord
from lumilink.services.badge_catalog import BadgeCatalog
from lumilink.services.badge_orchestrator import BadgeOrchestrator, award_payload
from lumilink.services.event_bus import InMemoryEventBus
from lumilink.services.event_models import BadgeAwardedEvent, BaseEvent, make_correlation_id

logger = logging.getLogger("lumilink.event_handlers.badges")

_HANDLER_SOURCE = "badge_engine"


def make_activity_handler(
    orchestrator: BadgeOrchestrator,
    bus: InMemoryEventBus,
) -> Callable[[BaseEvent], Awaitable[None]]:
    async def handle_activity_recorded(event: BaseEvent) -> None:
        user_id = str(getattr(event, "user_id", "") or "")
        kind = str(getattr(event, "kind", "") or "unknown")
        if not user_id:
            return

        records = await orchestrator.on_activity_event(user_id, kind)
        await dispatch_awards(orchestrator.catalog, records, bus=bus, correlation_id=event.correlation_id)
        if records:
            logger.info(
                "Processed activity.recorded user=%s kind=%s awarded=%s",
                user_id, kind, [r.badge_key for r in records],
            )

    return handle_activity_recorded


async def handle_badge_awarded(event: BaseEvent) -> None:
    """Store the award payload in the user's notification inbox."""
    if not isinstance(event, BadgeAwardedEvent):
        return
    payload = event.to_payload()
    doc = {
        "_id": f"{payload.user_id}:{payload.badge_key}",
        **payload.model_dump(),
        "rarity": payload.rarity.value,
        "seen": False,
        "correlation_id": event.correlation_id,
    }
    try:
        await _db.db.badge_notifications.insert_one(doc)
    except DuplicateKeyError:
        logger.debug("Notification already queued: %s", doc["_id"])


async def dispatch_awards(
    catalog: BadgeCatalog,
    records: Iterable[AwardRecord],
    *,
    bus: InMemoryEventBus | None = None,
    source: str = _HANDLER_SOURCE,
    correlation_id: str | None = None,
) -> None:
    """Hand each new award to the notification layer.

    Published as ``badge.awarded`` while the bus runs; written to the inbox
    directly when there is no running bus or the bus refused the event.
    """
    for record in records:
        event = BadgeAwardedEvent.from_payload(
            award_payload(catalog, record),
            source=source,
            correlation_id=correlation_id or make_correlation_id(),
        )
        if bus is not None and bus.running and await bus.publish(event):
            continue
        await handle_badge_awarded(event)
