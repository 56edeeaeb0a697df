from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone

import pytest

from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from httpx import AsyncClient, ASGITransport

# Override settings before importing app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SOURCE_API_BASE_URL"] = "http://test-bridge:8080"
os.environ["SOURCE_API_KEY"] = "test-key"
os.environ["OPENROUTER_API_KEY"] = "test-key"
os.environ["SOURCES"] = "alpha,beta"
os.environ["RETRY_BASE_DELAY_SECS"] = "0.01"

from leadwatch.main import app
from leadwatch.config import get_settings
from leadwatch.models import db  # noqa: F401
from leadwatch.models.intent import Intent
from leadwatch.models.schemas import Classification, ClassifiedItem, RawItem
from leadwatch.pipeline.orchestrator import Pipeline
from leadwatch.sources.base import SourceMessage

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeSourceClient:
    """In-memory source bridge. Replies are keyed by (source, post_id)."""

    def __init__(self, channels: dict[str, bool] | None = None):
        self.channels = channels or {}
        self.posts: dict[str, list[int]] = {}
        self.thread_replies: dict[tuple[str, int], list[SourceMessage]] = {}
        self.reply_errors: dict[tuple[str, int], Exception] = {}
        self.reply_delays: dict[tuple[str, int], float] = {}
        self.capability_calls: list[str] = []
        self.post_calls: list[str] = []
        self.reply_calls: list[tuple[str, int]] = []

    def add_replies(self, source: str, post_id: int, *ids: int, text: str = "hello") -> None:
        self.posts.setdefault(source, [])
        if post_id not in self.posts[source]:
            self.posts[source].append(post_id)
        replies = self.thread_replies.setdefault((source, post_id), [])
        for i in ids:
            replies.append(SourceMessage(id=i, author=f"user{i}", text=f"{text} {i}", date=NOW))

    async def has_threads(self, source: str) -> bool:
        self.capability_calls.append(source)
        return self.channels.get(source, True)

    async def recent_top_level_items(self, source: str, limit: int) -> list[SourceMessage]:
        self.post_calls.append(source)
        return [SourceMessage(id=pid, text="post", date=NOW) for pid in self.posts.get(source, [])][:limit]

    async def replies(self, source: str, item_id: int, limit: int) -> list[SourceMessage]:
        key = (source, item_id)
        self.reply_calls.append(key)
        if key in self.reply_delays:
            await asyncio.sleep(self.reply_delays[key])
        if key in self.reply_errors:
            raise self.reply_errors[key]
        return list(self.thread_replies.get(key, []))[:limit]


class MemorySink:
    def __init__(self, fail_on: set[int] | None = None):
        self.items: list[ClassifiedItem] = []
        self.counters: dict[str, dict] = {}
        self.capabilities: dict[str, bool] = {}
        self.reports = 0
        self.fail_on = fail_on or set()

    async def append(self, item: ClassifiedItem) -> None:
        if item.item_id in self.fail_on:
            raise OSError("disk full")
        self.items.append(item)

    async def update_source_counters(self, source: str, is_lead: bool) -> None:
        entry = self.counters.setdefault(source, {"comments": 0, "leads": 0})
        entry["comments"] += 1
        if is_lead:
            entry["leads"] += 1

    async def notify_capability(self, source: str, has_comments: bool) -> None:
        self.capabilities[source] = has_comments

    async def write_report(self) -> None:
        self.reports += 1


@pytest.fixture
def fake_source():
    return FakeSourceClient()


@pytest.fixture
def memory_sink():
    return MemorySink()


@pytest.fixture
def make_raw_item():
    def _make(item_id: int = 1, source: str = "alpha", thread_id: int = 10, text: str = "How much does it cost?"):
        return RawItem(
            source=source,
            thread_id=thread_id,
            item_id=item_id,
            author="Ivan",
            username="ivan",
            text=text,
            date=NOW,
        )

    return _make


@pytest.fixture
def make_classified(make_raw_item):
    def _make(item_id: int = 1, intent: Intent = Intent.NEUTRAL, is_lead: bool = False, lead_score: float = 0.0, **kwargs):
        classification = Classification(
            intent=intent,
            confidence=0.9,
            is_lead=is_lead,
            lead_score=lead_score,
            need_summary="needs help" if is_lead else "",
        )
        return ClassifiedItem.build(make_raw_item(item_id=item_id, **kwargs), classification)

    return _make


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def pipeline(fake_source, memory_sink):
    async def never_called(item):
        raise AssertionError("classifier should not be called")

    pipeline = Pipeline(fake_source, memory_sink, ["alpha"], classify_fn=never_called, settings=get_settings())
    yield pipeline
    await pipeline.stop()


@pytest.fixture
async def client(pipeline):
    app.state.pipeline = pipeline

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.state.pipeline = None
