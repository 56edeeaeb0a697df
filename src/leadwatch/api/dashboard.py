from __future__ import annotations

import asyncio
import json

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from leadwatch.api.deps import get_pipeline
from leadwatch.models.schemas import ClassifiedItem, StatsResponse
from leadwatch.pipeline.hub import CLOSED, Lagged, Subscription
from leadwatch.pipeline.orchestrator import Pipeline

logger = structlog.get_logger()

router = APIRouter()

KEEPALIVE_SECS = 15.0


@router.get("/api/stats", response_model=StatsResponse)
async def stats(pipeline: Pipeline = Depends(get_pipeline)):
    snapshot = await pipeline.dashboard.stats()
    return StatsResponse(
        total=snapshot.total,
        leads=snapshot.leads,
        lead_rate=snapshot.lead_rate,
        by_intent={intent.value: count for intent, count in snapshot.by_intent.items()},
    )


@router.get("/api/leads", response_model=list[ClassifiedItem])
async def leads(
    limit: int = Query(100, ge=1, le=1000),
    pipeline: Pipeline = Depends(get_pipeline),
):
    return (await pipeline.dashboard.leads())[:limit]


@router.get("/api/recent", response_model=list[ClassifiedItem])
async def recent(pipeline: Pipeline = Depends(get_pipeline)):
    # Newest first for display
    return list(reversed(await pipeline.dashboard.recent()))


@router.get("/api/comments", response_model=list[ClassifiedItem])
async def comments(pipeline: Pipeline = Depends(get_pipeline)):
    return await pipeline.dashboard.dashboard_rows()


def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


async def stream_events(sub: Subscription[ClassifiedItem], request: Request | None = None):
    """Turn a hub subscription into server-sent events."""
    try:
        while True:
            if request is not None and await request.is_disconnected():
                break
            try:
                received = await asyncio.wait_for(sub.recv(), KEEPALIVE_SECS)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            if received is CLOSED:
                break
            if isinstance(received, Lagged):
                logger.warning("sse_client_lagged", skipped=received.skipped)
                yield _sse("lagged", json.dumps({"skipped": received.skipped}))
                continue
            yield _sse("comment", received.model_dump_json())
    finally:
        sub.close()


@router.get("/sse")
async def sse(request: Request, pipeline: Pipeline = Depends(get_pipeline)):
    sub = pipeline.hub.subscribe("sse")
    return StreamingResponse(
        stream_events(sub, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
