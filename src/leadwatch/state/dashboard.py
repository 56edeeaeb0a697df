from __future__ import annotations

import bisect
from collections import deque
from dataclasses import dataclass, field

import structlog

from leadwatch.config import get_settings
from leadwatch.models.intent import ALL_INTENTS, Intent
from leadwatch.models.schemas import ClassifiedItem
from leadwatch.pipeline.hub import CLOSED, Lagged, Subscription
from leadwatch.state.rwlock import RWLock

logger = structlog.get_logger()


@dataclass
class AggregateStats:
    total: int = 0
    leads: int = 0
    by_intent: dict[Intent, int] = field(default_factory=dict)

    @property
    def lead_rate(self) -> float | None:
        if self.total == 0:
            return None
        return self.leads / self.total

    def copy(self) -> AggregateStats:
        return AggregateStats(self.total, self.leads, dict(self.by_intent))


class DashboardState:
    """Live aggregates fed from the hub and read by the API.

    One writer (``push``) at a time; snapshot readers run concurrently.
    """

    def __init__(self, recent_size: int | None = None) -> None:
        size = recent_size or get_settings().recent_buffer_size
        if size <= 0:
            raise ValueError("recent_size must be positive")
        self.recent_size = size
        self._lock = RWLock()
        self._stats = AggregateStats()
        self._recent: deque[ClassifiedItem] = deque(maxlen=size)
        self._leads: list[ClassifiedItem] = []
        # Negated scores, ascending, parallel to _leads
        self._lead_keys: list[float] = []

    async def push(self, item: ClassifiedItem) -> None:
        async with self._lock.write():
            self._stats.total += 1
            if item.is_lead:
                self._stats.leads += 1
            self._stats.by_intent[item.intent] = self._stats.by_intent.get(item.intent, 0) + 1

            if item.is_lead:
                key = -item.lead_score
                pos = bisect.bisect_right(self._lead_keys, key)
                self._lead_keys.insert(pos, key)
                self._leads.insert(pos, item)

            self._recent.append(item)

    async def stats(self) -> AggregateStats:
        async with self._lock.read():
            return self._stats.copy()

    async def leads(self) -> list[ClassifiedItem]:
        async with self._lock.read():
            return list(self._leads)

    async def recent(self) -> list[ClassifiedItem]:
        """Oldest first, in hub arrival order."""
        async with self._lock.read():
            return list(self._recent)

    async def dashboard_rows(self) -> list[ClassifiedItem]:
        """All leads by score, then the recent non-lead comments."""
        async with self._lock.read():
            return list(self._leads) + [c for c in self._recent if not c.is_lead]

    async def intent_breakdown(self) -> list[tuple[str, int]]:
        async with self._lock.read():
            counts = [
                (intent.label, self._stats.by_intent.get(intent, 0))
                for intent in ALL_INTENTS
            ]
        breakdown = [(label, count) for label, count in counts if count > 0]
        breakdown.sort(key=lambda pair: pair[1], reverse=True)
        return breakdown

    async def consume(self, subscription: Subscription[ClassifiedItem]) -> None:
        """Apply every hub item until the hub closes."""
        while True:
            received = await subscription.recv()
            if received is CLOSED:
                logger.info("dashboard_updater_stopped")
                break
            if isinstance(received, Lagged):
                logger.warning("dashboard_updater_lagged", skipped=received.skipped)
                continue
            await self.push(received)
