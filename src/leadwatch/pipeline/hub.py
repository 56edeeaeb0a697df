"""Broadcast hub for classified comments.

Each subscriber owns a bounded buffer. ``publish`` never waits: when a
subscriber's buffer is full its oldest entry is dropped and the subscriber's
next ``recv`` reports ``Lagged(n)`` before resuming with the oldest item still
buffered. Once the hub is closed and a buffer drains, ``recv`` returns
``CLOSED``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

import structlog

from leadwatch.errors import HubClosedError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class Lagged:
    skipped: int


class _Closed:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CLOSED"


CLOSED = _Closed()

Received = Union[T, Lagged, _Closed]


class Subscription(Generic[T]):
    def __init__(self, hub: Hub[T], capacity: int, name: str) -> None:
        self._hub = hub
        self._buffer: deque[T] = deque()
        self._capacity = capacity
        self._skipped = 0
        self._ready = asyncio.Event()
        self._closed = False
        self.name = name

    def _push(self, item: T) -> None:
        if len(self._buffer) >= self._capacity:
            self._buffer.popleft()
            self._skipped += 1
        self._buffer.append(item)
        self._ready.set()

    def _mark_closed(self) -> None:
        self._closed = True
        self._ready.set()

    def pending(self) -> int:
        return len(self._buffer)

    def try_recv(self) -> Received[T] | None:
        """Non-blocking receive. Returns None when nothing is available yet."""
        if self._skipped:
            skipped, self._skipped = self._skipped, 0
            return Lagged(skipped)
        if self._buffer:
            return self._buffer.popleft()
        if self._closed:
            return CLOSED
        return None

    async def recv(self) -> Received[T]:
        while True:
            result = self.try_recv()
            if result is not None:
                return result
            self._ready.clear()
            await self._ready.wait()

    def close(self) -> None:
        """Unsubscribe. Buffered items are discarded."""
        self._hub._unsubscribe(self)
        self._buffer.clear()
        self._mark_closed()


class Hub(Generic[T]):
    def __init__(self, capacity: int = 256) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._subscribers: list[Subscription[T]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, name: str = "subscriber") -> Subscription[T]:
        sub: Subscription[T] = Subscription(self, self._capacity, name)
        if self._closed:
            sub._mark_closed()
        else:
            self._subscribers.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription[T]) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            pass

    def publish(self, item: T) -> int:
        """Deliver to every current subscriber. Returns how many received it."""
        if self._closed:
            raise HubClosedError("hub is closed")
        if not self._subscribers:
            logger.warning("hub_no_subscribers")
            return 0
        for sub in self._subscribers:
            sub._push(item)
        return len(self._subscribers)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in self._subscribers:
            sub._mark_closed()
        self._subscribers.clear()
