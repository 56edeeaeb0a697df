from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from leadwatch.config import get_settings
from leadwatch.errors import ClassifyError, HubClosedError, RateLimitedError
from leadwatch.models.schemas import Classification, ClassifiedItem, RawItem
from leadwatch.pipeline.classifier import ClassifyFn, classify
from leadwatch.pipeline.hub import Hub
from leadwatch.pipeline.work_queue import WorkQueue

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 4
    base_delay: float = 5.0

    def delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)


@dataclass
class RetryState:
    """Attempt bookkeeping for one item's rate-limit retries."""

    policy: RetryPolicy
    retries: int = 0
    total_delay: float = 0.0

    @property
    def exhausted(self) -> bool:
        return self.retries >= self.policy.max_retries

    def next_delay(self, floor: float | None = None) -> float:
        """Backoff for the next retry, never shorter than the server's Retry-After."""
        delay = self.policy.delay(self.retries)
        if floor is not None:
            delay = max(delay, floor)
        self.retries += 1
        self.total_delay += delay
        return delay


@dataclass
class AnalyzerStats:
    processed: int = 0
    fallbacks: int = 0
    retries: int = 0
    in_flight: int = 0
    max_in_flight: int = 0


class Analyzer:
    """Classifies queued comments with bounded concurrency and publishes every result."""

    def __init__(
        self,
        queue: WorkQueue[RawItem],
        hub: Hub[ClassifiedItem],
        classify_fn: ClassifyFn = classify,
        *,
        max_concurrent: int | None = None,
        retry_policy: RetryPolicy | None = None,
        call_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self.queue = queue
        self.hub = hub
        self.classify_fn = classify_fn
        self.max_concurrent = max_concurrent or settings.max_concurrent
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay_secs,
        )
        self.call_timeout = call_timeout or settings.classify_timeout_secs
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._tasks: set[asyncio.Task] = set()
        self.stats = AnalyzerStats()

    async def run(self) -> None:
        logger.info("analyzer_started", max_concurrent=self.max_concurrent)
        try:
            while True:
                await self._semaphore.acquire()
                item = await self.queue.get()
                if item is None:
                    self._semaphore.release()
                    break
                task = asyncio.create_task(self._process(item))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
        except asyncio.CancelledError:
            for task in list(self._tasks):
                task.cancel()
            raise
        logger.info("analyzer_stopped", processed=self.stats.processed, fallbacks=self.stats.fallbacks)

    async def classify_with_retry(self, item: RawItem) -> tuple[Classification, RetryState]:
        """Call the classifier, backing off on rate limits.

        Raises ClassifyError once the retry budget is spent; other errors
        propagate unchanged and are never retried.
        """
        state = RetryState(self.retry_policy)
        while True:
            try:
                result = await asyncio.wait_for(self.classify_fn(item), self.call_timeout)
                return result, state
            except RateLimitedError as e:
                if state.exhausted:
                    raise ClassifyError(
                        f"rate limited after {state.retries} retries"
                    ) from e
                delay = state.next_delay(e.retry_after)
                self.stats.retries += 1
                logger.warning(
                    "classify_rate_limited",
                    item_id=item.item_id,
                    retry=state.retries,
                    max_retries=self.retry_policy.max_retries,
                    delay=delay,
                )
                await self._sleep(delay)

    async def _process(self, item: RawItem) -> None:
        self.stats.in_flight += 1
        self.stats.max_in_flight = max(self.stats.max_in_flight, self.stats.in_flight)
        try:
            classification, _ = await self.classify_with_retry(item)
            fallback = False
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "classify_failed",
                source=item.source,
                thread_id=item.thread_id,
                item_id=item.item_id,
                error=str(e)[:300],
            )
            classification = Classification.fallback()
            fallback = True
        finally:
            self.stats.in_flight -= 1
            self._semaphore.release()

        if fallback:
            self.stats.fallbacks += 1
        elif classification.is_lead:
            logger.info(
                "lead_found",
                source=item.source,
                author=item.author,
                intent=classification.intent.value,
                lead_score=classification.lead_score,
                need=classification.need_summary,
            )

        self._publish(ClassifiedItem.build(item, classification))

    def _publish(self, analyzed: ClassifiedItem) -> None:
        self.stats.processed += 1
        try:
            self.hub.publish(analyzed)
        except HubClosedError:
            logger.warning("hub_closed_dropping", item_id=analyzed.item_id)
