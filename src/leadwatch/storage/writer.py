from __future__ import annotations

import structlog

from leadwatch.models.schemas import ClassifiedItem
from leadwatch.pipeline.hub import CLOSED, Lagged, Subscription
from leadwatch.storage.sinks import Sink

logger = structlog.get_logger()


class StorageWriter:
    """Hub subscriber that persists every classified comment.

    Sink failures are logged and the loop moves on to the next item.
    """

    def __init__(self, sink: Sink) -> None:
        self.sink = sink
        self.written = 0
        self.failed = 0

    async def notify_capability(self, source: str, has_comments: bool) -> None:
        try:
            await self.sink.notify_capability(source, has_comments)
            await self.sink.write_report()
        except Exception as e:
            logger.error("capability_write_failed", source=source, error=str(e)[:200])

    async def handle(self, item: ClassifiedItem) -> bool:
        try:
            await self.sink.append(item)
            await self.sink.update_source_counters(item.source, item.is_lead)
            await self.sink.write_report()
        except Exception as e:
            self.failed += 1
            logger.error(
                "storage_write_failed",
                source=item.source,
                item_id=item.item_id,
                error=str(e)[:200],
            )
            return False
        self.written += 1
        return True

    async def run(self, subscription: Subscription[ClassifiedItem]) -> None:
        logger.info("storage_writer_started", sink=type(self.sink).__name__)
        while True:
            received = await subscription.recv()
            if received is CLOSED:
                logger.info("storage_writer_stopped", written=self.written, failed=self.failed)
                break
            if isinstance(received, Lagged):
                logger.warning("storage_writer_lagged", skipped=received.skipped)
                continue
            await self.handle(received)
