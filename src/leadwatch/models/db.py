from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import SQLModel, Field


class CommentRecord(SQLModel, table=True):
    __tablename__ = "comments"

    id: Optional[int] = Field(default=None, primary_key=True)

    # Origin
    source: str = Field(index=True)
    thread_id: int
    item_id: int
    author: str = ""
    username: Optional[str] = None
    phone: Optional[str] = None
    text: str = ""
    date: datetime

    # Classification
    intent: str = Field(index=True)
    confidence: float = 0.0
    is_lead: bool = Field(default=False, index=True)
    lead_score: float = 0.0
    need_summary: str = ""
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SourceSummary(SQLModel, table=True):
    __tablename__ = "source_summaries"

    source: str = Field(primary_key=True)
    has_comments: Optional[bool] = None  # None until the capability check has run
    comments: int = 0
    leads: int = 0
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
