from __future__ import annotations

import asyncio

import structlog

from leadwatch.config import Settings, get_settings
from leadwatch.models.schemas import ClassifiedItem, RawItem
from leadwatch.pipeline.analyzer import Analyzer, RetryPolicy
from leadwatch.pipeline.classifier import ClassifyFn, classify
from leadwatch.pipeline.hub import Hub
from leadwatch.pipeline.poller import SourcePoller
from leadwatch.pipeline.work_queue import WorkQueue
from leadwatch.sources.base import SourceClient
from leadwatch.sources.http import HttpSourceClient
from leadwatch.state.dashboard import DashboardState
from leadwatch.storage.database import get_session_factory
from leadwatch.storage.sinks import FileSink, Sink, SqlSink
from leadwatch.storage.writer import StorageWriter

logger = structlog.get_logger()


class Pipeline:
    """source -> poller -> queue -> analyzer -> hub -> {dashboard, storage, live clients}"""

    def __init__(
        self,
        source_client: SourceClient,
        sink: Sink,
        sources: list[str],
        classify_fn: ClassifyFn = classify,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.source_client = source_client
        self.queue: WorkQueue[RawItem] = WorkQueue(settings.queue_size)
        self.hub: Hub[ClassifiedItem] = Hub(settings.hub_capacity)
        self.dashboard = DashboardState(settings.recent_buffer_size)
        self.writer = StorageWriter(sink)
        self.poller = SourcePoller(
            source_client,
            sources,
            self.queue,
            capability_listener=self.writer.notify_capability,
            poll_interval=settings.poll_interval_secs,
            posts_limit=settings.posts_limit,
            replies_limit=settings.replies_limit,
            source_timeout=settings.source_timeout_secs,
            fetch_timeout=settings.fetch_timeout_secs,
            replies_timeout=settings.replies_timeout_secs,
            capability_timeout=settings.capability_timeout_secs,
        )
        self.analyzer = Analyzer(
            self.queue,
            self.hub,
            classify_fn,
            max_concurrent=settings.max_concurrent,
            retry_policy=RetryPolicy(settings.max_retries, settings.retry_base_delay_secs),
            call_timeout=settings.classify_timeout_secs,
        )

        # Subscribe before anything is published so no item is missed
        self._dashboard_sub = self.hub.subscribe("dashboard")
        self._storage_sub = self.hub.subscribe("storage")
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._spawn("poller", self.poller.run())
        self._spawn("analyzer", self.analyzer.run())
        self._spawn("dashboard", self.dashboard.consume(self._dashboard_sub))
        self._spawn("storage", self.writer.run(self._storage_sub))
        logger.info("pipeline_started", sources=self.poller.sources)

    def _spawn(self, name: str, coro) -> None:
        task = asyncio.create_task(coro, name=f"leadwatch-{name}")
        task.add_done_callback(lambda t: _log_task_end(name, t))
        self._tasks[name] = task

    async def stop(self, drain_timeout: float = 30.0) -> None:
        """Stop polling, let in-flight classifications finish, then close the hub."""
        if not self._tasks:
            return
        self.queue.close()

        poller = self._tasks["poller"]
        poller.cancel()
        await asyncio.gather(poller, return_exceptions=True)

        analyzer = self._tasks["analyzer"]
        try:
            await asyncio.wait_for(analyzer, drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("analyzer_drain_timeout", timeout=drain_timeout)
        except Exception:
            # Already logged by the done callback
            pass

        self.hub.close()
        await asyncio.gather(self._tasks["dashboard"], self._tasks["storage"], return_exceptions=True)
        self._tasks.clear()

        aclose = getattr(self.source_client, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("pipeline_stopped")


def _log_task_end(name: str, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("pipeline_task_failed", task=name, error=repr(exc))
    else:
        logger.info("pipeline_task_ended", task=name)


def build_sink(settings: Settings) -> Sink:
    backend = settings.storage_backend.lower()
    if backend == "sql":
        return SqlSink(get_session_factory(), settings.data_dir)
    if backend in ("jsonl", "csv"):
        return FileSink(settings.data_dir, backend)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


def build_pipeline(settings: Settings | None = None) -> Pipeline:
    settings = settings or get_settings()
    sources = settings.source_names()
    if not sources:
        logger.warning("no_sources_configured")
    return Pipeline(
        source_client=HttpSourceClient(),
        sink=build_sink(settings),
        sources=sources,
        settings=settings,
    )
