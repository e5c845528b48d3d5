"""Calibration control endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from app.schemas import (
    CalibrationStatusResponse,
    CancelResponse,
    ExtendedCalibrationRequest,
    StandardCalibrationRequest,
)
from app.services.calibration import (
    calibration_status,
    cancel_calibration,
    run_health_check,
    start_extended_calibration,
    start_standard_calibration,
)
from rngstats.errors import ConcurrentCalibrationError

router = APIRouter(prefix="/calibration", tags=["calibration"])


def _conflict(exc: ConcurrentCalibrationError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"message": str(exc), "status": calibration_status()},
    )


@router.post(
    "/standard",
    response_model=CalibrationStatusResponse,
    status_code=202,
    summary="Start a standard calibration in the background",
)
def postStandardCalibration(
    payload: StandardCalibrationRequest | None = None,
) -> CalibrationStatusResponse:
    total_bits = payload.total_bits if payload else None
    try:
        status = start_standard_calibration(total_bits)
    except ConcurrentCalibrationError as exc:
        raise _conflict(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"message": str(exc)}) from exc
    return CalibrationStatusResponse(**status)


@router.post(
    "/extended",
    response_model=CalibrationStatusResponse,
    status_code=202,
    summary="Start an extended calibration in the background",
)
def postExtendedCalibration(
    payload: ExtendedCalibrationRequest,
) -> CalibrationStatusResponse:
    try:
        status = start_extended_calibration(payload.duration_seconds)
    except ConcurrentCalibrationError as exc:
        raise _conflict(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"message": str(exc)}) from exc
    return CalibrationStatusResponse(**status)


@router.post("/health-check", summary="Run a quick hardware health check")
def postHealthCheck() -> Dict[str, Any]:
    try:
        return run_health_check()
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail={"message": str(exc)}) from exc


@router.post("/cancel", response_model=CancelResponse)
def postCancelCalibration() -> CancelResponse:
    return CancelResponse(cancelled=cancel_calibration())


@router.get("/status", response_model=CalibrationStatusResponse)
def getCalibrationStatus() -> CalibrationStatusResponse:
    return CalibrationStatusResponse(**calibration_status())


__all__ = ["router"]
