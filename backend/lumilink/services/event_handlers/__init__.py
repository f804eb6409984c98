"""
backend/lumilink/services/event_handlers/__init__.py

Purpose:
    Central registration entrypoint for event bus subscribers.

Dependencies:
    - lumilink.services.event_bus
    - lumilink.services.event_handlers.badge_handlers
"""

from __future__ import annotations

from lumilink.config import settings
from lumilink.services.badge_orchestrator import BadgeOrchestrator
from lumilink.services.event_bus import InMemoryEventBus
from lumilink.services.event_handlers.badge_handlers import handle_badge_awarded, make_activity_handler


def register_event_handlers(bus: InMemoryEventBus, orchestrator: BadgeOrchestrator) -> None:
    if settings.EVENT_HANDLER_ACTIVITY_ENABLED:
        bus.subscribe(
            "activity.recorded",
            make_activity_handler(orchestrator, bus),
            handler_name="badge_evaluation",
            concurrency=settings.EVENT_HANDLER_ACTIVITY_CONCURRENCY,
        )
    if settings.EVENT_HANDLER_NOTIFY_ENABLED:
        bus.subscribe("badge.awarded", handle_badge_awarded, handler_name="badge_notification", concurrency=1)
