from __future__ import annotations

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel


class SourceMessage(BaseModel):
    """A post or reply as returned by the source bridge."""

    id: int
    author: str = "Anonymous"
    username: str | None = None
    phone: str | None = None
    text: str = ""
    date: datetime


class SourceClient(Protocol):
    async def has_threads(self, source: str) -> bool:
        """Whether the source has a discussion attached to its posts."""
        ...

    async def recent_top_level_items(self, source: str, limit: int) -> list[SourceMessage]:
        ...

    async def replies(self, source: str, item_id: int, limit: int) -> list[SourceMessage]:
        ...
