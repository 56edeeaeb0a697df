from __future__ import annotations

from fastapi import HTTPException, Request

from leadwatch.pipeline.orchestrator import Pipeline


def get_pipeline(request: Request) -> Pipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not running")
    return pipeline
