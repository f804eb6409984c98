"""
backend/lumilink/models/metric.py

Purpose:
    Activity metric names and the per-evaluation metric snapshot.

Dependencies:
    - pydantic
    - lumilink.utils
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from lumilink.utils import utcnow


class MetricName(str, Enum):
    LINK_COUNT = "link_count"
    SOCIAL_LINK_COUNT = "social_link_count"
    LINK_CLICKS = "link_clicks"
    PROFILE_VIEWS = "profile_views"
    UNIQUE_VISITORS = "unique_visitors"
    UNIQUE_COUNTRIES = "unique_countries"
    PROFILE_COMPLETION = "profile_completion"  # 0..100
    ACCOUNT_AGE_DAYS = "account_age_days"
    LOGIN_COUNT = "login_count"


KNOWN_METRICS: frozenset[str] = frozenset(m.value for m in MetricName)


class MetricSnapshot(BaseModel):
    """Metric values for one user captured at one point in time.

    Absent metrics read as 0 so that a missing signal can never make a
    threshold rule pass on its own.
    """
    user_id: str
    values: dict[str, float] = Field(default_factory=dict)
    captured_at: datetime = Field(default_factory=utcnow)

    def get(self, metric: str) -> float:
        raw = self.values.get(metric)
        if raw is None:
            return 0.0
        return float(raw)

    def covers(self, metrics: set[str] | frozenset[str]) -> bool:
        return all(m in self.values for m in metrics)
