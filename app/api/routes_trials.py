"""Trial ingestion endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from app.core.config import get_engine_config
from app.schemas import TrialBatchRequest, TrialCountResponse, TrialIngestResponse
from app.services.trials import count_trials, out_of_range_trials, save_trials
from rngstats.models import Trial

router = APIRouter(prefix="/trials", tags=["trials"])


@router.post(
    "",
    response_model=TrialIngestResponse,
    summary="Store a batch of trials",
)
def postTrials(payload: TrialBatchRequest) -> TrialIngestResponse:
    bits_per_trial = get_engine_config().analysis.bits_per_trial
    trials = [
        Trial(
            timestamp=item.timestamp,
            value=item.value,
            session_id=item.session_id,
            sequence_number=item.sequence_number,
            mode=item.mode,
            intention=item.intention,
        )
        for item in payload.trials
    ]

    out_of_range = out_of_range_trials(trials)
    if out_of_range:
        raise HTTPException(
            status_code=400,
            detail={
                "message": f"Trial values must lie in [0, {bits_per_trial}].",
                "sequence_numbers": [trial.sequence_number for trial in out_of_range],
            },
        )

    try:
        inserted = save_trials(trials)
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail={"message": str(exc)}) from exc
    return TrialIngestResponse(received=len(trials), inserted=inserted)


@router.get("/count", response_model=TrialCountResponse)
def getTrialCount() -> TrialCountResponse:
    try:
        return TrialCountResponse(total_trials=count_trials())
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail={"message": str(exc)}) from exc


__all__ = ["router"]
