"""
Database Models and Report Value Types
"""

from gateway_reports.models.outcome_record import OutcomeRecord
from gateway_reports.models.report_aggregate import ReportAggregate
from gateway_reports.models.report import (
    Granularity,
    OutcomeCategory,
    ReportFilter,
    ReportResult,
    TimeSlot,
    empty_category_counts,
)
from gateway_reports.models.overview import (
    NodeHealth,
    OverviewResult,
    OverviewTotals,
    StatusBucket,
    TimelinePoint,
)

__all__ = [
    "OutcomeRecord",
    "ReportAggregate",
    "Granularity",
    "OutcomeCategory",
    "ReportFilter",
    "ReportResult",
    "TimeSlot",
    "empty_category_counts",
    "NodeHealth",
    "OverviewResult",
    "OverviewTotals",
    "StatusBucket",
    "TimelinePoint",
]
