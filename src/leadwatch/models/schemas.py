from __future__ import annotations

import math
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leadwatch.models.intent import Intent


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawItem(BaseModel):
    """A harvested reply, produced by the poller and consumed once by the analyzer."""

    model_config = ConfigDict(frozen=True)

    source: str
    thread_id: int
    item_id: int
    author: str
    username: str | None = None
    phone: str | None = None
    text: str
    date: datetime


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: Intent = Intent.NEUTRAL
    confidence: float = 0.0
    is_lead: bool = False
    lead_score: float = 0.0
    need_summary: str = ""

    @field_validator("confidence", "lead_score")
    @classmethod
    def _clamp(cls, value: float) -> float:
        value = float(value)
        if math.isnan(value):
            return 0.0
        return min(max(value, 0.0), 1.0)

    @classmethod
    def fallback(cls) -> Classification:
        return cls()


class ClassifiedItem(BaseModel):
    """A RawItem plus its classification. This is what flows through the hub."""

    model_config = ConfigDict(frozen=True)

    source: str
    thread_id: int
    item_id: int
    author: str
    username: str | None = None
    phone: str | None = None
    text: str
    date: datetime
    intent: Intent
    confidence: float
    is_lead: bool
    lead_score: float
    need_summary: str
    analyzed_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def build(cls, item: RawItem, classification: Classification) -> ClassifiedItem:
        return cls(
            **item.model_dump(),
            **classification.model_dump(),
            analyzed_at=_utcnow(),
        )


class ClassificationResult(BaseModel):
    """JSON payload the model is asked to return."""

    intent: str
    confidence: float
    is_lead: bool = False
    lead_score: float = 0.0
    need_summary: str = ""


class StatsResponse(BaseModel):
    total: int = 0
    leads: int = 0
    lead_rate: float | None = None
    by_intent: dict[str, int] = {}


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    comments_total: int = 0
    leads_total: int = 0
