from __future__ import annotations

from fastapi import APIRouter, Depends

from leadwatch.api.deps import get_pipeline
from leadwatch.models.schemas import HealthResponse
from leadwatch.pipeline.orchestrator import Pipeline

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(pipeline: Pipeline = Depends(get_pipeline)):
    stats = await pipeline.dashboard.stats()
    return HealthResponse(
        status="ok" if pipeline.running else "stopped",
        comments_total=stats.total,
        leads_total=stats.leads,
    )
