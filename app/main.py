"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import router as api_router
from app.core.config import get_engine_config, get_settings
from app.core.db import get_engine
from app.core.scheduler import start_scheduler, stop_scheduler
from app.services.calibration import shutdown_orchestrator

logger = logging.getLogger(__name__)

tags_metadata = [
    {
        "name": "system",
        "description": "Infra endpoints for health checks and diagnostics.",
    },
    {
        "name": "trials",
        "description": "Ingest bounded-sum trials into the storage backend.",
    },
    {
        "name": "analysis",
        "description": (
            "Significance, effect-size, excursion, trend and quality analyses "
            "over stored trial windows."
        ),
    },
    {
        "name": "calibration",
        "description": "Standard and extended calibration runs and health checks.",
    },
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Validate configuration and prepare storage before serving traffic."""

    settings = get_settings()
    get_engine_config()
    if settings.use_database_storage:
        # create_all runs on first engine use
        get_engine()
    if settings.scheduler_enabled:
        start_scheduler()
    else:
        logger.info("Scheduler disabled (RNG_SCHEDULER_ENABLED=false)")
    try:
        yield
    finally:
        stop_scheduler()
        shutdown_orchestrator()


app = FastAPI(
    title="RNG Inspec API",
    description=(
        "Statistical analysis, quality control and calibration for bounded-sum "
        "binary trial streams."
    ),
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

app.include_router(api_router)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
