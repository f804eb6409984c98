"""
backend/lumilink/models/badge.py

Purpose:
    Badge domain contracts: rarity tiers, icon variants, the threshold rule
    language, catalog entries, durable award records and the read models
    handed to the presentation layer. Also holds the built-in badge
    definitions used when no catalog file is configured.

Dependencies:
    - pydantic
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Rarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"

    @property
    def rank(self) -> int:
        return _RARITY_ORDER.index(self)


_RARITY_ORDER = [Rarity.COMMON, Rarity.UNCOMMON, Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY]


class BadgeCategory(str, Enum):
    VIEWS = "views"
    CLICKS = "clicks"
    ACHIEVEMENTS = "achievements"
    SPECIAL = "special"


class BadgeIcon(str, Enum):
    """Closed set of icons the presentation layer knows how to render."""
    WAVE = "wave"
    LINK = "link"
    USER = "user"
    PHONE = "phone"
    BUTTERFLY = "butterfly"
    POINTER = "pointer"
    HUNDRED = "hundred"
    TROPHY = "trophy"
    EYE = "eye"
    STAR = "star"
    ROCKET = "rocket"
    FLASK = "flask"
    GLOBE = "globe"
    CALENDAR = "calendar"
    UNKNOWN = "unknown"

    @classmethod
    def resolve(cls, name: Any) -> BadgeIcon:
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def is_known(cls, name: Any) -> bool:
        if isinstance(name, cls):
            return True
        return str(name or "").strip().lower() in cls._value2member_map_


ThresholdOp = Literal[">=", ">", "==", "<=", "<"]


class MetricThreshold(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    metric: str = Field(min_length=1)
    op: ThresholdOp = ">="
    value: float

    def metrics(self) -> set[str]:
        return {self.metric}


class RuleGroup(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: Literal["all", "any"] = "all"
    conditions: tuple[MetricThreshold | RuleGroup, ...] = Field(min_length=1)

    def metrics(self) -> set[str]:
        out: set[str] = set()
        for condition in self.conditions:
            out |= condition.metrics()
        return out


RuleGroup.model_rebuild()

BadgeRule = MetricThreshold | RuleGroup

_THRESHOLD_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*(>=|<=|==|>|<)\s*(-?\d+(?:\.\d+)?)\s*$")
_JOINER_RE = re.compile(r"\s+(and|or)\s+", re.IGNORECASE)


def parse_rule_expression(text: str) -> dict[str, Any]:
    """Parse ``"link_count >= 1"`` or ``"a >= 1 and b > 2"`` into the structured rule shape.

    A single expression may use either ``and`` or ``or`` but not both; nested
    logic needs the structured form.
    """
    pieces = _JOINER_RE.split(text.strip())
    terms = pieces[0::2]
    joiners = {j.lower() for j in pieces[1::2]}
    if len(joiners) > 1:
        raise ValueError(f"cannot mix 'and' and 'or' in rule expression: {text!r}")

    conditions = []
    for term in terms:
        match = _THRESHOLD_RE.match(term)
        if not match:
            raise ValueError(f"malformed rule term: {term!r}")
        metric, op, value = match.groups()
        conditions.append({"metric": metric, "op": op, "value": float(value)})

    if len(conditions) == 1:
        return conditions[0]
    return {"mode": "all" if joiners == {"and"} else "any", "conditions": conditions}


class BadgeDefinition(BaseModel):
    """Immutable catalog entry."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str = Field(min_length=1, max_length=80, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    name: str
    description: str = ""
    rarity: Rarity = Rarity.COMMON
    category: BadgeCategory = BadgeCategory.ACHIEVEMENTS
    icon: BadgeIcon = BadgeIcon.UNKNOWN
    color: str = "#3B82F6"
    rule: Optional[BadgeRule] = None
    # Special badges are granted by administrators only.
    manual_only: bool = False

    @field_validator("icon", mode="before")
    @classmethod
    def _resolve_icon(cls, v: Any) -> BadgeIcon:
        return BadgeIcon.resolve(v)

    @field_validator("rule", mode="before")
    @classmethod
    def _parse_rule(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_rule_expression(v)
        return v

    @model_validator(mode="after")
    def _rule_required(self) -> BadgeDefinition:
        if self.rule is None and not self.manual_only:
            raise ValueError(f"badge {self.key!r} needs a rule unless manual_only is set")
        return self

    def metrics(self) -> set[str]:
        return self.rule.metrics() if self.rule is not None else set()


AwardSource = Literal["evaluation", "admin"]


class AwardRecord(BaseModel):
    """Badge award document in MongoDB (one per user and badge)."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    badge_key: str
    awarded_at: datetime
    source: AwardSource = "evaluation"

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> AwardRecord:
        return cls(
            user_id=str(doc["user_id"]),
            badge_key=str(doc["badge_key"]),
            awarded_at=doc["awarded_at"],
            source=doc.get("source") or "evaluation",
        )


class AwardResult(BaseModel):
    granted: bool
    record: Optional[AwardRecord] = None


class BadgeAwardPayload(BaseModel):
    """What the notification/presentation layer receives for a new award."""
    user_id: str
    badge_key: str
    rarity: Rarity
    awarded_at: datetime


class BadgeProgress(BaseModel):
    key: str
    name: str
    description: str
    icon: BadgeIcon
    color: str
    category: BadgeCategory
    rarity: Rarity
    current: float = 0.0
    target: Optional[float] = None
    progress_pct: float = 0.0
    is_completed: bool = False
    awarded_at: Optional[datetime] = None


class UserBadgeSummary(BaseModel):
    user_id: str
    badges: list[BadgeProgress]
    earned_count: int
    total_count: int
    metrics_available: bool = True


class BadgeLeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    badge_count: int
    last_awarded_at: Optional[datetime] = None


class BadgeStat(BaseModel):
    key: str
    rarity: Rarity
    owners: int
    rarity_pct: float


class BadgeCategoryInfo(BaseModel):
    id: BadgeCategory
    name: str
    description: str
    icon: BadgeIcon


BADGE_CATEGORIES: list[BadgeCategoryInfo] = [
    BadgeCategoryInfo(id=BadgeCategory.VIEWS, name="Views", description="Profile view milestones", icon=BadgeIcon.EYE),
    BadgeCategoryInfo(id=BadgeCategory.CLICKS, name="Clicks", description="Link click achievements", icon=BadgeIcon.POINTER),
    BadgeCategoryInfo(id=BadgeCategory.SPECIAL, name="Special", description="Exclusive badges", icon=BadgeIcon.STAR),
    BadgeCategoryInfo(id=BadgeCategory.ACHIEVEMENTS, name="Achievements", description="General achievements", icon=BadgeIcon.TROPHY),
]


# Built-in catalog. Parsed and validated by BadgeCatalog at startup.
BADGE_DEFINITIONS: list[dict[str, Any]] = [
    # --- Getting started ---
    {
        "key": "welcome",
        "name": "Welcome",
        "description": "Signed in to LumiLink for the first time",
        "icon": "wave",
        "category": "achievements",
        "rarity": "common",
        "color": "#3B82F6",
        "rule": "login_count >= 1",
    },
    {
        "key": "first-link",
        "name": "First Link",
        "description": "Added your first link",
        "icon": "link",
        "category": "achievements",
        "rarity": "common",
        "color": "#10B981",
        "rule": "link_count >= 1",
    },
    {
        "key": "profile-complete",
        "name": "Profile Pro",
        "description": "Filled in every profile field",
        "icon": "user",
        "category": "achievements",
        "rarity": "uncommon",
        "color": "#8B5CF6",
        "rule": "profile_completion >= 100",
    },
    {
        "key": "veteran",
        "name": "Veteran",
        "description": "Member for 30 days",
        "icon": "calendar",
        "category": "achievements",
        "rarity": "uncommon",
        "color": "#0EA5E9",
        "rule": "account_age_days >= 30",
    },

    # --- Social links ---
    {
        "key": "social-starter",
        "name": "Social Starter",
        "description": "Added 5 social links",
        "icon": "phone",
        "category": "achievements",
        "rarity": "uncommon",
        "color": "#F59E0B",
        "rule": "social_link_count >= 5",
    },
    {
        "key": "social-butterfly",
        "name": "Social Butterfly",
        "description": "Added 10 social links",
        "icon": "butterfly",
        "category": "achievements",
        "rarity": "rare",
        "color": "#EC4899",
        "rule": "social_link_count >= 10",
    },

    # --- Clicks ---
    {
        "key": "first-click",
        "name": "First Click",
        "description": "Received your first link click",
        "icon": "pointer",
        "category": "clicks",
        "rarity": "common",
        "color": "#06B6D4",
        "rule": "link_clicks >= 1",
    },
    {
        "key": "click-collector",
        "name": "Click Collector",
        "description": "Received 100 link clicks",
        "icon": "hundred",
        "category": "clicks",
        "rarity": "rare",
        "color": "#84CC16",
        "rule": "link_clicks >= 100",
    },
    {
        "key": "click-master",
        "name": "Click Master",
        "description": "Received 1000 link clicks",
        "icon": "trophy",
        "category": "clicks",
        "rarity": "epic",
        "color": "#F97316",
        "rule": "link_clicks >= 1000",
    },

    # --- Views ---
    {
        "key": "first-view",
        "name": "First View",
        "description": "Your profile got its first view",
        "icon": "eye",
        "category": "views",
        "rarity": "common",
        "color": "#6366F1",
        "rule": "profile_views >= 1",
    },
    {
        "key": "century-views",
        "name": "Popular",
        "description": "Reached 100 profile views",
        "icon": "star",
        "category": "views",
        "rarity": "rare",
        "color": "#EF4444",
        "rule": "profile_views >= 100",
    },
    {
        "key": "viral",
        "name": "Viral",
        "description": "Reached 1000 profile views",
        "icon": "rocket",
        "category": "views",
        "rarity": "epic",
        "color": "#DC2626",
        "rule": "profile_views >= 1000",
    },
    {
        "key": "globetrotter",
        "name": "Globetrotter",
        "description": "100 unique visitors from at least 10 countries",
        "icon": "globe",
        "category": "views",
        "rarity": "legendary",
        "color": "#14B8A6",
        "rule": {
            "mode": "all",
            "conditions": [
                {"metric": "unique_visitors", "op": ">=", "value": 100},
                {"metric": "unique_countries", "op": ">=", "value": 10},
            ],
        },
    },

    # --- Special (granted by administrators) ---
    {
        "key": "early-adopter",
        "name": "Early Adopter",
        "description": "Joined LumiLink during the beta",
        "icon": "rocket",
        "category": "special",
        "rarity": "legendary",
        "color": "#7C3AED",
        "manual_only": True,
    },
    {
        "key": "beta-tester",
        "name": "Beta Tester",
        "description": "Helped test new features",
        "icon": "flask",
        "category": "special",
        "rarity": "epic",
        "color": "#059669",
        "manual_only": True,
    },
]
