import logging
from datetime import timedelta

import lumilink.database as _db
from lumilink.services.badge_orchestrator import BadgeOrchestrator
from lumilink.services.event_bus import InMemoryEventBus
from lumilink.services.event_handlers.badge_handlers import dispatch_awards
from lumilink.utils import ensure_utc, utcnow
from lumilink.workers._state import get_synced_at, set_synced

logger = logging.getLogger("lumilink.badge_engine")

_STATE_KEY = "badge_engine"
# Time-based metrics (account age) change without any write; sweep at least daily.
_FULL_SWEEP_AFTER = timedelta(hours=24)


async def check_badges(orchestrator: BadgeOrchestrator, bus: InMemoryEventBus | None = None) -> int:
    """Background task: run a catch-up evaluation pass for every active user.

    Picks up awards missed because a triggering event was dropped or a pass was
    degraded. Smart sleep: skips if no links, profiles or analytics changed
    since the last run, unless that run is older than a day.
    New awards go to the notification layer like any other grant.
    Returns the number of badges awarded.
    """
    started_at = utcnow()
    last_run = await get_synced_at(_STATE_KEY)
    if last_run and started_at - ensure_utc(last_run) < _FULL_SWEEP_AFTER:
        changed = {"updated_at": {"$gte": last_run}}
        recent_link = await _db.db.links.find_one(changed, {"_id": 1})
        recent_profile = await _db.db.profiles.find_one(changed, {"_id": 1})
        recent_analytics = await _db.db.analytics_summary.find_one(changed, {"_id": 1})
        if not recent_link and not recent_profile and not recent_analytics:
            logger.debug("Smart sleep: no activity since last run, skipping badge sweep")
            return 0

    total_awarded = 0
    users = 0
    async for user in _db.db.users.find({"is_deleted": {"$ne": True}}, {"_id": 1}):
        users += 1
        awarded = await orchestrator.on_activity_event(str(user["_id"]), "sweep")
        await dispatch_awards(orchestrator.catalog, awarded, bus=bus, source=_STATE_KEY)
        total_awarded += len(awarded)

    # Mark with the start time so changes made during the sweep are seen next run.
    await set_synced(_STATE_KEY, started_at)
    if total_awarded > 0:
        logger.info("Badge sweep: awarded %d new badges across %d users", total_awarded, users)
    return total_awarded
