"""
backend/lumilink/services/metric_aggregator.py

Purpose:
    Assembles activity-metric snapshots for badge evaluation. Metric values
    come from external stores (profiles, links, analytics summaries) through a
    MetricSource; every read is bounded by a timeout and failures surface as
    MetricSourceUnavailable. A per-pass snapshot caches values and failures so
    one evaluation pass reads each metric at most once.

Dependencies:
    - motor (through lumilink.database)
    - pymongo
    - lumilink.models.metric
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from pymongo.errors import PyMongoError

import lumilink.database as _db
from lumilink.models.metric import MetricName, MetricSnapshot
from lumilink.utils import ensure_utc, user_lookup_filter, utcnow

logger = logging.getLogger("lumilink.metric_aggregator")

PROFILE_COMPLETION_FIELDS = ("display_name", "bio", "avatar_url", "background_url")


class MetricSourceUnavailable(Exception):
    """Raised when a metric cannot be read (store unreachable or read timed out)."""

    def __init__(self, metric: str, reason: str = "") -> None:
        self.metric = metric
        self.reason = reason
        super().__init__(f"metric {metric} unavailable{': ' + reason if reason else ''}")


class MetricSource(Protocol):
    async def get_metric(self, user_id: str, metric_name: str) -> float: ...


class MongoMetricSource:
    """Reads metrics from the collections owned by profile/link storage and analytics."""

    def __init__(self) -> None:
        self._readers: dict[str, Callable[[str], Awaitable[float]]] = {
            MetricName.LINK_COUNT.value: self._link_count,
            MetricName.SOCIAL_LINK_COUNT.value: self._social_link_count,
            MetricName.LINK_CLICKS.value: self._link_clicks,
            MetricName.PROFILE_VIEWS.value: self._summary_field("event_count"),
            MetricName.UNIQUE_VISITORS.value: self._summary_field("unique_visitors"),
            MetricName.UNIQUE_COUNTRIES.value: self._summary_field("unique_countries"),
            MetricName.PROFILE_COMPLETION.value: self._profile_completion,
            MetricName.ACCOUNT_AGE_DAYS.value: self._account_age_days,
            MetricName.LOGIN_COUNT.value: self._login_count,
        }

    async def get_metric(self, user_id: str, metric_name: str) -> float:
        reader = self._readers.get(metric_name)
        if reader is None:
            logger.debug("No reader for metric %s; reporting 0", metric_name)
            return 0.0
        try:
            return float(await reader(user_id))
        except PyMongoError as exc:
            raise MetricSourceUnavailable(metric_name, str(exc)) from exc

    async def _profile(self, user_id: str, projection: dict[str, int] | None = None) -> dict[str, Any] | None:
        return await _db.db.profiles.find_one({"user_id": user_id}, projection or {"_id": 1})

    async def _link_count(self, user_id: str) -> float:
        profile = await self._profile(user_id)
        if not profile:
            return 0
        return await _db.db.links.count_documents({"profile_id": profile["_id"]})

    async def _social_link_count(self, user_id: str) -> float:
        profile = await self._profile(user_id)
        if not profile:
            return 0
        return await _db.db.links.count_documents({"profile_id": profile["_id"], "is_social": True})

    async def _link_clicks(self, user_id: str) -> float:
        profile = await self._profile(user_id)
        if not profile:
            return 0
        rows = await _db.db.links.aggregate([
            {"$match": {"profile_id": profile["_id"]}},
            {"$group": {"_id": None, "clicks": {"$sum": {"$ifNull": ["$click_count", 0]}}}},
        ]).to_list(length=1)
        return rows[0].get("clicks", 0) if rows else 0

    def _summary_field(self, field: str) -> Callable[[str], Awaitable[float]]:
        async def _read(user_id: str) -> float:
            profile = await self._profile(user_id)
            if not profile:
                return 0
            summary = await _db.db.analytics_summary.find_one(
                {"profile_id": profile["_id"]},
                {field: 1},
            )
            return (summary or {}).get(field) or 0

        return _read

    async def _profile_completion(self, user_id: str) -> float:
        profile = await self._profile(user_id, {f: 1 for f in PROFILE_COMPLETION_FIELDS})
        if not profile:
            return 0
        filled = sum(1 for f in PROFILE_COMPLETION_FIELDS if str(profile.get(f) or "").strip())
        return round(filled * 100 / len(PROFILE_COMPLETION_FIELDS), 2)

    async def _account_age_days(self, user_id: str) -> float:
        user = await _db.db.users.find_one(user_lookup_filter(user_id), {"created_at": 1})
        created_at = (user or {}).get("created_at")
        if not created_at:
            return 0
        return max(0, (utcnow() - ensure_utc(created_at)).days)

    async def _login_count(self, user_id: str) -> float:
        user = await _db.db.users.find_one(user_lookup_filter(user_id), {"login_count": 1})
        return (user or {}).get("login_count") or 0


class MetricAggregator:
    def __init__(
        self,
        source: MetricSource,
        metric_names: Iterable[str],
        *,
        timeout_seconds: float,
    ) -> None:
        self._source = source
        self._metric_names = tuple(sorted(set(metric_names)))
        self._timeout = max(0.001, float(timeout_seconds))

    @property
    def metric_names(self) -> tuple[str, ...]:
        return self._metric_names

    async def read_metric(self, user_id: str, metric_name: str) -> float:
        try:
            return float(
                await asyncio.wait_for(self._source.get_metric(user_id, metric_name), timeout=self._timeout)
            )
        except asyncio.TimeoutError as exc:
            raise MetricSourceUnavailable(metric_name, f"timed out after {self._timeout}s") from exc

    async def snapshot(self, user_id: str) -> MetricSnapshot:
        """Read every catalog metric; any failure fails the whole snapshot."""
        pass_snapshot = self.begin_pass(user_id)
        return await pass_snapshot.require(self._metric_names)

    def begin_pass(self, user_id: str) -> PassSnapshot:
        return PassSnapshot(self, user_id)


class PassSnapshot:
    """Lazily filled snapshot scoped to one evaluation pass.

    Values and failures are remembered for the lifetime of the pass; a metric
    that failed once is not re-read until the next pass.
    """

    def __init__(self, aggregator: MetricAggregator, user_id: str) -> None:
        self._aggregator = aggregator
        self.user_id = user_id
        self._values: dict[str, float] = {}
        self._failed: dict[str, MetricSourceUnavailable] = {}
        self._captured_at = utcnow()

    @property
    def failed_metrics(self) -> set[str]:
        return set(self._failed)

    async def require(self, metric_names: Iterable[str]) -> MetricSnapshot:
        for name in sorted(set(metric_names)):
            if name in self._values:
                continue
            if name in self._failed:
                raise self._failed[name]
            try:
                self._values[name] = await self._aggregator.read_metric(self.user_id, name)
            except MetricSourceUnavailable as exc:
                self._failed[name] = exc
                raise
        return MetricSnapshot(
            user_id=self.user_id,
            values=dict(self._values),
            captured_at=self._captured_at,
        )
