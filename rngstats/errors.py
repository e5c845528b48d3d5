"""Exception types raised by the analysis engine."""

from __future__ import annotations


class RngStatsError(Exception):
    """Base class for engine errors."""


class InsufficientDataError(RngStatsError, ValueError):
    """Raised when an analysis that needs data receives an empty window."""


class InvalidConfigurationError(RngStatsError, ValueError):
    """Raised when a configuration object is built with out-of-domain values."""


class ConcurrentCalibrationError(RngStatsError, RuntimeError):
    """Raised when a calibration is requested while another one is running."""


__all__ = [
    "RngStatsError",
    "InsufficientDataError",
    "InvalidConfigurationError",
    "ConcurrentCalibrationError",
]
