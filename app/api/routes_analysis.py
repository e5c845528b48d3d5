"""Analysis category endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException
from fastapi import Path as PathParam

from app.schemas import AnalysisRequest, ReportRecordResponse
from app.services.analysis_storage import get_latest_report
from app.services.analysis_tasks import ANALYSES, report_kind, run_analysis

router = APIRouter(prefix="/analysis", tags=["analysis"])


def _require_known(kind: str) -> None:
    if kind not in ANALYSES:
        raise HTTPException(
            status_code=404,
            detail={"message": f"Unknown analysis: {kind}"},
        )


@router.post(
    "/{kind}",
    summary="Run an analysis over stored trials and store the report",
)
def postAnalysis(
    payload: AnalysisRequest,
    kind: str = PathParam(..., description="Analysis name"),
) -> Dict[str, Any]:
    _require_known(kind)
    try:
        return run_analysis(
            kind,
            session_id=payload.session_id,
            start=payload.start,
            end=payload.end,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"message": str(exc)}) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail={"message": str(exc)}) from exc


@router.get(
    "/{kind}/latest",
    response_model=ReportRecordResponse,
    summary="Return the newest stored report for an analysis",
)
def getLatestAnalysis(
    kind: str = PathParam(..., description="Analysis name"),
) -> ReportRecordResponse:
    _require_known(kind)
    try:
        record = get_latest_report(report_kind(kind))
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail={"message": str(exc)}) from exc

    if not record:
        raise HTTPException(
            status_code=404,
            detail={"message": f"No stored report for analysis: {kind}"},
        )
    return ReportRecordResponse(
        id=record["_id"],
        kind=record["kind"],
        created_at=record["created_at"],
        result=record["result"],
        metadata=record.get("metadata") or {},
    )


__all__ = ["router"]
