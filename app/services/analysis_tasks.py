"""Run engine analyses over stored trial windows and persist the reports."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Sequence

from app.core.config import get_engine_config
from app.services.analysis_storage import save_report
from app.services.trials import load_trials
from rngstats.config import EngineConfig
from rngstats.effect_size import EffectSizeResult, effect_size
from rngstats.excursions import CumulativeResult, cumulative_deviation
from rngstats.models import Trial
from rngstats.quality import QualityReport, assess_quality
from rngstats.reports import Report, to_document
from rngstats.trend import TrendResult, detect_trend
from rngstats.variance import (
    NetworkVarianceResult,
    ZScoreResult,
    network_variance,
    z_score,
)

logger = logging.getLogger(__name__)

AnalysisRunner = Callable[[Sequence[Trial], EngineConfig], Report]

ANALYSES: Dict[str, AnalysisRunner] = {
    "network-variance": lambda trials, config: network_variance(trials, config.analysis),
    "z-score": lambda trials, config: z_score(trials, config.analysis),
    "effect-size": lambda trials, config: effect_size(trials, config.analysis),
    "cumulative": lambda trials, config: cumulative_deviation(trials, config.analysis),
    "trend": lambda trials, config: detect_trend(trials, config.analysis),
    "quality": lambda trials, config: assess_quality(
        trials, config.quality, config.analysis.bits_per_trial
    ),
}

REPORT_KINDS = {
    "network-variance": NetworkVarianceResult.kind,
    "z-score": ZScoreResult.kind,
    "effect-size": EffectSizeResult.kind,
    "cumulative": CumulativeResult.kind,
    "trend": TrendResult.kind,
    "quality": QualityReport.kind,
}


def analysis_names() -> List[str]:
    return sorted(ANALYSES)


def report_kind(name: str) -> str:
    """Map an analysis name to the ``kind`` tag of the report it produces."""

    return REPORT_KINDS[name]


def select_trials(
    session_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> List[Trial]:
    if session_id is None and start is None and end is None:
        raise ValueError("Provide session_id or a start/end window.")
    return load_trials(start=start, end=end, session_id=session_id)


def run_analysis(
    name: str,
    *,
    session_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Dict[str, Any]:
    """Run one analysis over the selected window and store its report.

    Raises ``KeyError`` for unknown analysis names and ``ValueError`` (including
    ``InsufficientDataError``) when the window cannot be analyzed.
    """

    runner = ANALYSES[name]
    trials = select_trials(session_id=session_id, start=start, end=end)
    logger.info(
        "Running %s analysis over %d trials (session=%s start=%s end=%s)",
        name,
        len(trials),
        session_id,
        start,
        end,
    )
    report = runner(trials, get_engine_config())
    metadata = {
        "analysis": name,
        "session_id": session_id,
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
        "sample_size": len(trials),
    }
    record_id = save_report(report, metadata)
    logger.info("%s report stored (id=%s)", name, record_id)
    document = to_document(report)
    document["_id"] = record_id
    return document


def refresh_quality_scan(window_minutes: int) -> Dict[str, Any] | None:
    """Assess the most recent window; empty windows are skipped."""

    end = datetime.now(timezone.utc)
    start = end - timedelta(minutes=window_minutes)
    trials = load_trials(start=start, end=end)
    if not trials:
        logger.info("Quality scan skipped: no trials in the last %d minutes", window_minutes)
        return None
    document = run_analysis("quality", start=start, end=end)
    logger.info(
        "Quality scan complete (status=%s score=%.1f)",
        document["status"],
        document["score"],
    )
    return document


__all__ = [
    "ANALYSES",
    "REPORT_KINDS",
    "analysis_names",
    "report_kind",
    "select_trials",
    "run_analysis",
    "refresh_quality_scan",
]
