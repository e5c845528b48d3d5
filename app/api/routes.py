"""Top-level router that mounts every endpoint group."""

from __future__ import annotations

from fastapi import APIRouter

from app.api.routes_analysis import router as analysis_router
from app.api.routes_calibration import router as calibration_router
from app.api.routes_system import router as system_router
from app.api.routes_trials import router as trials_router
from app.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["system"])
def getHealth() -> HealthResponse:
    """Lightweight liveness probe endpoint."""

    return HealthResponse(status="ok")


router.include_router(system_router)
router.include_router(trials_router)
router.include_router(analysis_router)
router.include_router(calibration_router)

__all__ = ["router"]
