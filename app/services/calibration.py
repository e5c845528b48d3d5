"""Process-wide calibration orchestrator and its persistence hooks."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from functools import lru_cache
from typing import Any, Dict

from app.core.config import get_engine_config, get_settings
from app.services.analysis_storage import save_report
from rngstats.calibration import CalibrationOrchestrator
from rngstats.errors import ConcurrentCalibrationError
from rngstats.reports import to_document
from rngstats.sources import PseudoRandomSource

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_orchestrator() -> CalibrationOrchestrator:
    """Return the single orchestrator shared by routes and the scheduler."""

    settings = get_settings()
    return CalibrationOrchestrator(
        source=PseudoRandomSource(settings.source_seed),
        config=get_engine_config(),
    )


def _persist_when_done(trigger: str) -> Any:
    def _callback(future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            # failure is already recorded on the status snapshot
            return
        result = future.result()
        try:
            record_id = save_report(result, {"trigger": trigger})
        except Exception:  # noqa: BLE001  # runs on the worker thread
            logger.exception("Failed to store %s result", type(result).kind)
            return
        logger.info("%s result stored (id=%s)", type(result).kind, record_id)

    return _callback


def calibration_status() -> Dict[str, Any]:
    return to_document(get_orchestrator().status())


def start_standard_calibration(
    total_bits: int | None = None, trigger: str = "api"
) -> Dict[str, Any]:
    """Submit a standard calibration; raises ConcurrentCalibrationError if busy."""

    future = get_orchestrator().submit_standard_calibration(total_bits)
    future.add_done_callback(_persist_when_done(trigger))
    return calibration_status()


def start_extended_calibration(
    duration_seconds: float, trigger: str = "api"
) -> Dict[str, Any]:
    if duration_seconds <= 0:
        raise ValueError("duration_seconds must be positive.")
    future = get_orchestrator().submit_extended_calibration(duration_seconds)
    future.add_done_callback(_persist_when_done(trigger))
    return calibration_status()


def cancel_calibration() -> bool:
    return get_orchestrator().cancel()


def run_health_check() -> Dict[str, Any]:
    result = get_orchestrator().run_health_check()
    record_id = save_report(result, {"trigger": "api"})
    document = to_document(result)
    document["_id"] = record_id
    return document


def run_scheduled_calibration() -> bool:
    """Start the periodic calibration unless one is already running."""

    try:
        start_standard_calibration(trigger="schedule")
    except ConcurrentCalibrationError:
        logger.info("Scheduled calibration skipped: another calibration is running")
        return False
    return True


def shutdown_orchestrator() -> None:
    if get_orchestrator.cache_info().currsize:
        get_orchestrator().shutdown()
    get_orchestrator.cache_clear()


__all__ = [
    "get_orchestrator",
    "calibration_status",
    "start_standard_calibration",
    "start_extended_calibration",
    "cancel_calibration",
    "run_health_check",
    "run_scheduled_calibration",
    "shutdown_orchestrator",
]
