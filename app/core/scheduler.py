"""Background scheduler for periodic calibration and hourly quality scans."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import get_engine_config, get_settings
from app.services.analysis_tasks import refresh_quality_scan
from app.services.calibration import run_scheduled_calibration

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def _run_calibration() -> None:
    """Kick off the periodic standard calibration."""

    try:
        if run_scheduled_calibration():
            logger.info("Scheduled calibration submitted")
    except Exception:  # noqa: BLE001  # log but keep scheduler alive
        logger.exception("Scheduled calibration failed to start")


def _scan_quality() -> None:
    """Assess the trials collected over the last scan window."""

    settings = get_settings()
    try:
        refresh_quality_scan(settings.quality_scan_window_minutes)
    except Exception:  # noqa: BLE001
        logger.exception("Hourly quality scan failed")


def start_scheduler() -> None:
    """Start the APScheduler instance if not already running."""

    global _scheduler  # noqa: PLW0603
    if _scheduler is not None and _scheduler.running:
        return

    settings = get_settings()
    try:
        timezone = ZoneInfo(settings.scheduler_timezone)
    except Exception:  # noqa: BLE001  # invalid tz falls back to UTC
        logger.warning(
            "Invalid timezone %s, falling back to UTC",
            settings.scheduler_timezone,
        )
        timezone = ZoneInfo("UTC")

    interval = get_engine_config().calibration.schedule_interval
    scheduler = AsyncIOScheduler(timezone=timezone)
    scheduler.add_job(
        _run_calibration,
        trigger=IntervalTrigger(seconds=interval.total_seconds(), timezone=timezone),
        id="periodic_calibration",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        _scan_quality,
        trigger=CronTrigger(minute=settings.quality_scan_minute, timezone=timezone),
        id="hourly_quality_scan",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    _scheduler = scheduler
    logger.info(
        "Calibration scheduled every %s (%s); quality scan hourly at :%02d (%s)",
        interval,
        settings.calibration_schedule,
        settings.quality_scan_minute,
        timezone,
    )


def stop_scheduler() -> None:
    """Shutdown the scheduler on application exit."""

    global _scheduler  # noqa: PLW0603
    if _scheduler is None:
        return
    _scheduler.shutdown(wait=False)
    _scheduler = None


__all__ = ["start_scheduler", "stop_scheduler"]
