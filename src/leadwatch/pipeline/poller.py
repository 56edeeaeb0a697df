from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

from leadwatch.config import get_settings
from leadwatch.errors import QueueClosedError
from leadwatch.models.schemas import RawItem
from leadwatch.pipeline.dedup import DedupTracker
from leadwatch.pipeline.work_queue import WorkQueue
from leadwatch.sources.base import SourceClient, SourceMessage

logger = structlog.get_logger()

CapabilityListener = Callable[[str, bool], Awaitable[None]]


class SourcePoller:
    """Walks the configured sources one after another and queues unseen replies."""

    def __init__(
        self,
        client: SourceClient,
        sources: list[str],
        queue: WorkQueue[RawItem],
        capability_listener: CapabilityListener | None = None,
        tracker: DedupTracker | None = None,
        *,
        poll_interval: float | None = None,
        posts_limit: int | None = None,
        replies_limit: int | None = None,
        source_timeout: float | None = None,
        fetch_timeout: float | None = None,
        replies_timeout: float | None = None,
        capability_timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.sources = list(sources)
        self.queue = queue
        self.capability_listener = capability_listener
        self.tracker = tracker or DedupTracker()
        self.poll_interval = settings.poll_interval_secs if poll_interval is None else poll_interval
        self.posts_limit = posts_limit or settings.posts_limit
        self.replies_limit = replies_limit or settings.replies_limit
        self.source_timeout = source_timeout or settings.source_timeout_secs
        self.fetch_timeout = fetch_timeout or settings.fetch_timeout_secs
        self.replies_timeout = replies_timeout or settings.replies_timeout_secs
        self.capability_timeout = capability_timeout or settings.capability_timeout_secs
        self._has_threads: dict[str, bool] = {}

    async def run(self) -> None:
        logger.info("poller_started", sources=self.sources, interval=self.poll_interval)
        while not self.queue.closed:
            await self.poll_once()
            if self.queue.closed:
                break
            await asyncio.sleep(self.poll_interval)
        logger.info("poller_stopped")

    async def poll_once(self) -> int:
        """Poll every source once. Returns the number of items queued."""
        queued = 0
        for source in self.sources:
            if self.queue.closed:
                return queued
            logger.info("polling_source", source=source)
            try:
                queued += await asyncio.wait_for(self._poll_source(source), self.source_timeout)
            except QueueClosedError:
                logger.info("work_queue_closed", source=source)
                return queued
            except asyncio.TimeoutError:
                logger.error("source_poll_timeout", source=source, timeout=self.source_timeout)
            except Exception as e:
                logger.error("source_poll_error", source=source, error=str(e)[:200])
        return queued

    async def has_threads(self, source: str) -> bool:
        """Capability check, cached for the life of the process after the first call."""
        cached = self._has_threads.get(source)
        if cached is not None:
            return cached

        try:
            result = bool(
                await asyncio.wait_for(self.client.has_threads(source), self.capability_timeout)
            )
        except asyncio.TimeoutError:
            logger.warning("capability_check_timeout", source=source)
            result = False
        except Exception as e:
            logger.warning("capability_check_error", source=source, error=str(e)[:200])
            result = False

        logger.info("source_capability", source=source, has_comments=result)
        self._has_threads[source] = result

        if self.capability_listener is not None:
            try:
                await self.capability_listener(source, result)
            except Exception as e:
                logger.warning("capability_notify_failed", source=source, error=str(e)[:200])
        return result

    async def _poll_source(self, source: str) -> int:
        if not await self.has_threads(source):
            return 0

        posts = await asyncio.wait_for(
            self.client.recent_top_level_items(source, self.posts_limit),
            self.fetch_timeout,
        )

        queued = 0
        for post in posts:
            replies = await self._fetch_replies(source, post.id)
            if replies is None:
                continue
            queued += await self._forward_thread(source, post.id, replies)
        return queued

    async def _fetch_replies(self, source: str, post_id: int) -> list[SourceMessage] | None:
        try:
            return await asyncio.wait_for(
                self.client.replies(source, post_id, self.replies_limit),
                self.replies_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("replies_timeout", source=source, post_id=post_id)
        except Exception as e:
            logger.warning("replies_error", source=source, post_id=post_id, error=str(e)[:200])
        return None

    async def _forward_thread(self, source: str, post_id: int, replies: list[SourceMessage]) -> int:
        key = (source, post_id)
        last_seen = self.tracker.watermark(key)
        max_id = last_seen
        queued = 0

        for reply in replies:
            if not self.tracker.should_emit(key, reply.id):
                continue
            max_id = max(max_id, reply.id)
            await self.queue.put(
                RawItem(
                    source=source,
                    thread_id=post_id,
                    item_id=reply.id,
                    author=reply.author,
                    username=reply.username,
                    phone=reply.phone,
                    text=reply.text,
                    date=reply.date,
                )
            )
            queued += 1

        # One advance per thread per pass
        self.tracker.advance(key, max_id)
        return queued
