"""
Report Errors

ReportError is the root for every error raised by the report core.
Store failures (SQLAlchemyError and friends) are not wrapped; they propagate as-is.
"""

from datetime import datetime
from typing import Optional


class ReportError(Exception):
    """Base class for report core errors."""


class InvalidReportRangeError(ReportError, ValueError):
    """Raised when a report window is empty or inverted. Checked before any store access."""

    def __init__(self, start: datetime, end: datetime, message: Optional[str] = None):
        self.start = start
        self.end = end
        if message is None:
            message = f"Invalid report range: end ({end.isoformat()}) must be after start ({start.isoformat()})"
        super().__init__(message)


class AggregatesUnavailableError(ReportError):
    """Raised when an aggregate-backed report is asked for something aggregates do not carry."""


__all__ = [
    "ReportError",
    "InvalidReportRangeError",
    "AggregatesUnavailableError",
]
