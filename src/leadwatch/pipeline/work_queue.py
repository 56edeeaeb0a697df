from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

from leadwatch.errors import QueueClosedError

T = TypeVar("T")

_CLOSED = object()


class WorkQueue(Generic[T]):
    """Bounded single-producer/single-consumer queue that can be closed.

    ``put`` suspends while the queue is full and raises QueueClosedError once
    closed. ``get`` returns None after close, once every queued item has been
    handed out.
    """

    def __init__(self, maxsize: int) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    async def put(self, item: T) -> None:
        if self._closed:
            raise QueueClosedError("work queue is closed")
        await self._queue.put(item)
        # close() may have happened while we were waiting for space
        if self._closed:
            raise QueueClosedError("work queue is closed")

    async def get(self) -> T | None:
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other getter
            try:
                self._queue.put_nowait(_CLOSED)
            except asyncio.QueueFull:
                pass
            return None
        return item

    def close(self) -> None:
        """Stop accepting items and wake a waiting consumer."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumer finds the queue closed once it drains the backlog
            pass
