from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from leadwatch.config import get_settings
from leadwatch.storage.database import init_db, dispose_db
from leadwatch.utils.logging import setup_logging
from leadwatch.pipeline.orchestrator import build_pipeline
from leadwatch.api.health import router as health_router
from leadwatch.api.dashboard import router as dashboard_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings = get_settings()
    if settings.storage_backend == "sql":
        await init_db()

    pipeline = build_pipeline(settings)
    app.state.pipeline = pipeline
    pipeline.start()
    try:
        yield
    finally:
        await pipeline.stop()
        app.state.pipeline = None
        await dispose_db()


app = FastAPI(title="Leadwatch", version="0.1.0", lifespan=lifespan)

app.include_router(health_router)
app.include_router(dashboard_router)
