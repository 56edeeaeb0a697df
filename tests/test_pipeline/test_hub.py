from __future__ import annotations

import asyncio

import pytest

from leadwatch.errors import HubClosedError
from leadwatch.pipeline.hub import CLOSED, Hub, Lagged


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber():
    hub: Hub[int] = Hub(capacity=4)
    a = hub.subscribe("a")
    b = hub.subscribe("b")

    assert hub.publish(1) == 2
    assert await a.recv() == 1
    assert await b.recv() == 1


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_not_an_error():
    hub: Hub[int] = Hub(capacity=4)
    assert hub.publish(1) == 0


@pytest.mark.asyncio
async def test_slow_subscriber_gets_lag_then_resumes():
    hub: Hub[int] = Hub(capacity=3)
    slow = hub.subscribe("slow")
    fast = hub.subscribe("fast")

    received_fast = []
    for i in range(1, 6):
        hub.publish(i)
        received_fast.append(await fast.recv())

    assert received_fast == [1, 2, 3, 4, 5]
    assert await slow.recv() == Lagged(2)
    assert [await slow.recv() for _ in range(3)] == [3, 4, 5]

    hub.publish(6)
    assert await slow.recv() == 6


@pytest.mark.asyncio
async def test_publish_never_blocks_on_a_stalled_subscriber():
    hub: Hub[int] = Hub(capacity=2)
    stalled = hub.subscribe("stalled")
    for i in range(1000):
        hub.publish(i)
    assert stalled.pending() == 2
    assert await stalled.recv() == Lagged(998)


@pytest.mark.asyncio
async def test_recv_waits_for_publish():
    hub: Hub[str] = Hub(capacity=2)
    sub = hub.subscribe()
    waiter = asyncio.create_task(sub.recv())
    await asyncio.sleep(0)
    assert not waiter.done()

    hub.publish("x")
    assert await asyncio.wait_for(waiter, 1.0) == "x"


@pytest.mark.asyncio
async def test_close_drains_then_reports_closed():
    hub: Hub[int] = Hub(capacity=4)
    sub = hub.subscribe()
    hub.publish(1)
    hub.close()

    assert await sub.recv() == 1
    assert await sub.recv() is CLOSED
    assert await sub.recv() is CLOSED


@pytest.mark.asyncio
async def test_close_wakes_idle_subscriber():
    hub: Hub[int] = Hub(capacity=4)
    sub = hub.subscribe()
    waiter = asyncio.create_task(sub.recv())
    await asyncio.sleep(0)
    hub.close()
    assert await asyncio.wait_for(waiter, 1.0) is CLOSED


@pytest.mark.asyncio
async def test_publish_after_close_raises():
    hub: Hub[int] = Hub(capacity=4)
    hub.close()
    hub.close()
    with pytest.raises(HubClosedError):
        hub.publish(1)


@pytest.mark.asyncio
async def test_subscribe_after_close_is_closed():
    hub: Hub[int] = Hub(capacity=4)
    hub.close()
    sub = hub.subscribe()
    assert await sub.recv() is CLOSED


@pytest.mark.asyncio
async def test_unsubscribed_client_no_longer_receives():
    hub: Hub[int] = Hub(capacity=4)
    keep = hub.subscribe("keep")
    gone = hub.subscribe("gone")
    gone.close()

    assert hub.publish(1) == 1
    assert hub.subscriber_count == 1
    assert await keep.recv() == 1
    assert gone.try_recv() is CLOSED
