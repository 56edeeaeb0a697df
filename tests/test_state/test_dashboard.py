from __future__ import annotations

import asyncio
import random

import pytest

from leadwatch.models.intent import Intent
from leadwatch.pipeline.hub import Hub
from leadwatch.state.dashboard import DashboardState
from leadwatch.state.rwlock import RWLock


@pytest.mark.asyncio
async def test_push_updates_stats(make_classified):
    state = DashboardState(recent_size=10)
    await state.push(make_classified(1, Intent.QUESTION))
    await state.push(make_classified(2, Intent.BUYING_INTENT, is_lead=True, lead_score=0.7))
    await state.push(make_classified(3, Intent.QUESTION))

    stats = await state.stats()
    assert stats.total == 3
    assert stats.leads == 1
    assert stats.by_intent == {Intent.QUESTION: 2, Intent.BUYING_INTENT: 1}
    assert stats.lead_rate == pytest.approx(1 / 3)


@pytest.mark.asyncio
async def test_lead_rate_undefined_without_items():
    state = DashboardState(recent_size=10)
    assert (await state.stats()).lead_rate is None


@pytest.mark.asyncio
async def test_stats_snapshot_is_a_copy(make_classified):
    state = DashboardState(recent_size=10)
    snapshot = await state.stats()
    await state.push(make_classified(1))
    assert snapshot.total == 0
    assert snapshot.by_intent == {}


@pytest.mark.asyncio
async def test_leads_stay_sorted_by_score(make_classified):
    state = DashboardState(recent_size=5)
    rng = random.Random(7)
    scores = [round(rng.random(), 3) for _ in range(50)]
    for i, score in enumerate(scores, start=1):
        await state.push(make_classified(i, Intent.HELP_REQUEST, is_lead=True, lead_score=score))
        leads = await state.leads()
        assert [l.lead_score for l in leads] == sorted((l.lead_score for l in leads), reverse=True)

    assert len(await state.leads()) == 50


@pytest.mark.asyncio
async def test_equal_scores_keep_arrival_order(make_classified):
    state = DashboardState(recent_size=5)
    await state.push(make_classified(1, Intent.PROBLEM, is_lead=True, lead_score=0.5))
    await state.push(make_classified(2, Intent.PROBLEM, is_lead=True, lead_score=0.9))
    await state.push(make_classified(3, Intent.PROBLEM, is_lead=True, lead_score=0.5))

    assert [l.item_id for l in await state.leads()] == [2, 1, 3]


@pytest.mark.asyncio
async def test_recent_buffer_evicts_oldest(make_classified):
    state = DashboardState(recent_size=3)
    for i in range(1, 6):
        await state.push(make_classified(i))
        assert len(await state.recent()) <= 3

    assert [c.item_id for c in await state.recent()] == [3, 4, 5]
    assert (await state.stats()).total == 5


@pytest.mark.asyncio
async def test_dashboard_rows_lists_leads_first(make_classified):
    state = DashboardState(recent_size=10)
    await state.push(make_classified(1, Intent.QUESTION))
    await state.push(make_classified(2, Intent.BUYING_INTENT, is_lead=True, lead_score=0.4))
    await state.push(make_classified(3, Intent.HELP_REQUEST, is_lead=True, lead_score=0.8))
    await state.push(make_classified(4, Intent.SPAM))

    assert [c.item_id for c in await state.dashboard_rows()] == [3, 2, 1, 4]


@pytest.mark.asyncio
async def test_intent_breakdown_sorted_by_count(make_classified):
    state = DashboardState(recent_size=10)
    for i, intent in enumerate([Intent.SPAM, Intent.QUESTION, Intent.QUESTION], start=1):
        await state.push(make_classified(i, intent))

    assert await state.intent_breakdown() == [("Question", 2), ("Spam", 1)]


@pytest.mark.asyncio
async def test_consume_follows_hub_arrival_order(make_classified):
    hub = Hub(capacity=10)
    state = DashboardState(recent_size=10)
    sub = hub.subscribe()
    consumer = asyncio.create_task(state.consume(sub))

    # Item 2 finished classification before item 1
    hub.publish(make_classified(2, thread_id=20))
    hub.publish(make_classified(1, thread_id=10))
    hub.close()
    await asyncio.wait_for(consumer, 1.0)

    assert [c.item_id for c in await state.recent()] == [2, 1]


@pytest.mark.asyncio
async def test_consume_survives_lag(make_classified):
    hub = Hub(capacity=2)
    state = DashboardState(recent_size=10)
    sub = hub.subscribe()
    for i in range(1, 6):
        hub.publish(make_classified(i))
    hub.close()

    await asyncio.wait_for(state.consume(sub), 1.0)

    assert [c.item_id for c in await state.recent()] == [4, 5]


@pytest.mark.asyncio
async def test_readers_do_not_block_each_other():
    lock = RWLock()
    inside = 0
    peak = 0

    async def reader():
        nonlocal inside, peak
        async with lock.read():
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.02)
            inside -= 1

    await asyncio.gather(*(reader() for _ in range(5)))
    assert peak == 5


@pytest.mark.asyncio
async def test_writer_excludes_readers():
    lock = RWLock()
    events = []

    async def writer():
        async with lock.write():
            events.append("write-start")
            await asyncio.sleep(0.02)
            events.append("write-end")

    async def reader():
        await asyncio.sleep(0.005)
        async with lock.read():
            events.append("read")

    await asyncio.gather(writer(), reader(), reader())
    assert events == ["write-start", "write-end", "read", "read"]


@pytest.mark.asyncio
async def test_nan_lead_score_keeps_leads_sorted(make_classified):
    state = DashboardState(recent_size=10)
    for i, score in enumerate([0.5, float("nan"), 0.9, 0.1, 0.7], start=1):
        await state.push(make_classified(i, Intent.BUYING_INTENT, is_lead=True, lead_score=score))

    assert [l.lead_score for l in await state.leads()] == [0.9, 0.7, 0.5, 0.1, 0.0]
