"""
backend/lumilink/services/event_models.py

Purpose:
    Domain event contracts for the badge engine. Activity events carry only
    the user id and what happened; award events carry the payload the
    presentation layer renders from.

Dependencies:
    - pydantic
    - lumilink.utils
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from lumilink.models.badge import BadgeAwardPayload, Rarity
from lumilink.utils import ensure_utc, utcnow

EventType = Literal[
    "activity.recorded",
    "badge.awarded",
]

ActivityKind = Literal[
    "link_created",
    "link_deleted",
    "link_clicked",
    "profile_viewed",
    "profile_updated",
    "login",
    "sweep",
]


def make_event_id() -> str:
    return str(uuid.uuid4())


def make_correlation_id() -> str:
    return str(uuid.uuid4())


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=make_event_id)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    correlation_id: str = Field(default_factory=make_correlation_id)
    source: str


class ActivityRecordedEvent(BaseEvent):
    event_type: Literal["activity.recorded"] = "activity.recorded"
    user_id: str
    kind: ActivityKind


class BadgeAwardedEvent(BaseEvent):
    event_type: Literal["badge.awarded"] = "badge.awarded"
    user_id: str
    badge_key: str
    rarity: Rarity
    awarded_at: datetime

    @classmethod
    def from_payload(cls, payload: BadgeAwardPayload, *, source: str, correlation_id: str) -> BadgeAwardedEvent:
        return cls(
            source=source,
            correlation_id=correlation_id,
            user_id=payload.user_id,
            badge_key=payload.badge_key,
            rarity=payload.rarity,
            awarded_at=payload.awarded_at,
        )

    def to_payload(self) -> BadgeAwardPayload:
        return BadgeAwardPayload(
            user_id=self.user_id,
            badge_key=self.badge_key,
            rarity=self.rarity,
            awarded_at=self.awarded_at,
        )


def normalize_event_time(event: BaseEvent) -> BaseEvent:
    event.occurred_at = ensure_utc(event.occurred_at)
    return event
