"""Pydantic schemas shared by the FastAPI endpoints."""

from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field, model_validator


class HealthResponse(BaseModel):
    status: str = Field(..., description="Server status flag (ok)")


class StorageHealthResponse(BaseModel):
    backend: str = Field(..., description="Active storage backend (file/mariadb)")
    connected: bool = Field(..., description="Whether the backend is reachable")
    message: str = Field(..., description="Detailed status message")
    total_trials: int | None = Field(None, description="Number of stored trials")


class TrialPayload(BaseModel):
    timestamp: datetime = Field(..., description="Trial timestamp (UTC if naive)")
    value: int = Field(..., ge=0, description="Sum of the binary draws in the trial")
    session_id: str = Field(..., min_length=1, max_length=64)
    sequence_number: int = Field(..., ge=0, description="Position within the session")
    mode: str = Field("standard", description="Collection mode")
    intention: str = Field("baseline", description="Experimental intention")


class TrialBatchRequest(BaseModel):
    trials: List[TrialPayload] = Field(..., min_length=1)


class TrialIngestResponse(BaseModel):
    received: int = Field(..., description="Trials in the request")
    inserted: int = Field(..., description="Trials not previously stored")


class TrialCountResponse(BaseModel):
    total_trials: int


class AnalysisRequest(BaseModel):
    session_id: str | None = Field(None, description="Analyze one session")
    start: datetime | None = Field(None, description="Window start (inclusive)")
    end: datetime | None = Field(None, description="Window end (inclusive)")

    @model_validator(mode="after")
    def _check_window(self) -> "AnalysisRequest":
        if self.session_id is None and self.start is None and self.end is None:
            raise ValueError("Provide session_id or a start/end window.")
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end.")
        return self


class ReportRecordResponse(BaseModel):
    id: str = Field(..., description="Stored record id")
    kind: str = Field(..., description="Report kind tag")
    created_at: str = Field(..., description="Storage time (ISO 8601)")
    result: Dict[str, Any] = Field(..., description="Report document")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProgressCheckpointResponse(BaseModel):
    phase: str
    progress: float
    timestamp: str


class CalibrationStatusResponse(BaseModel):
    state: str = Field(..., description="idle, running, completed or failed")
    calibration_type: str | None = None
    calibration_id: str | None = None
    phase: str | None = None
    progress: float = Field(0.0, description="Percent complete")
    checkpoints: List[ProgressCheckpointResponse] = Field(default_factory=list)
    started_at: str | None = None
    finished_at: str | None = None
    error: str | None = None


class StandardCalibrationRequest(BaseModel):
    total_bits: int | None = Field(
        None, gt=0, description="Bits to generate (defaults to the configured amount)"
    )


class ExtendedCalibrationRequest(BaseModel):
    duration_seconds: float = Field(..., gt=0, description="Monitoring duration")


class CancelResponse(BaseModel):
    cancelled: bool = Field(..., description="False when nothing was running")
