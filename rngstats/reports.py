"""Closed set of report types and their JSON document form."""

from __future__ import annotations

import dataclasses
import math
from datetime import datetime
from typing import Any, Dict, Union

from rngstats.baseline import BaselineComparison, BaselineResult, DriftAnalysis
from rngstats.calibration import (
    CalibrationResult,
    ExtendedCalibrationResult,
    HealthCheckResult,
)
from rngstats.effect_size import EffectSizeResult
from rngstats.excursions import CumulativeResult
from rngstats.quality import QualityReport
from rngstats.randomness import RandomnessSuiteResult
from rngstats.trend import TrendResult
from rngstats.variance import NetworkVarianceResult, ZScoreResult

Report = Union[
    NetworkVarianceResult,
    ZScoreResult,
    EffectSizeResult,
    CumulativeResult,
    TrendResult,
    RandomnessSuiteResult,
    QualityReport,
    BaselineResult,
    DriftAnalysis,
    BaselineComparison,
    CalibrationResult,
    ExtendedCalibrationResult,
    HealthCheckResult,
]

REPORT_TYPES = {
    report_type.kind: report_type
    for report_type in (
        NetworkVarianceResult,
        ZScoreResult,
        EffectSizeResult,
        CumulativeResult,
        TrendResult,
        RandomnessSuiteResult,
        QualityReport,
        BaselineResult,
        DriftAnalysis,
        BaselineComparison,
        CalibrationResult,
        ExtendedCalibrationResult,
        HealthCheckResult,
    )
}


def _json_value(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        document: Dict[str, Any] = {}
        kind = getattr(type(value), "kind", None)
        if kind is not None:
            document["kind"] = kind
        for item in dataclasses.fields(value):
            document[item.name] = _json_value(getattr(value, item.name))
        for name in getattr(type(value), "document_properties", ()):
            document[name] = _json_value(getattr(value, name))
        return document
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): _json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_value(item) for item in value]
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def to_document(report: Report) -> Dict[str, Any]:
    """Convert a report into plain JSON-compatible data, tagged with its kind."""

    return _json_value(report)


__all__ = ["Report", "REPORT_TYPES", "to_document"]
