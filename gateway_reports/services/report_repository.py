"""
Report Repository

Two ways to answer the same report:
- raw_counts: scan outcome_records, bucket and classify in Python. Always correct,
  supports every filter, costs a full range scan.
- aggregated_counts: sum precomputed report_aggregates rows. Cheap, but only valid
  for unfiltered queries and only as fresh as the last aggregation sweep.

Both build results through build_report, so callers cannot tell the sources apart
except through ReportResult.source.
"""

import asyncio
import time
from datetime import datetime
from typing import Dict, Mapping, Optional, Tuple

import structlog

from gateway_reports.models.report import (
    Granularity,
    OutcomeCategory,
    ReportFilter,
    ReportResult,
    TimeSlot,
    empty_category_counts,
)
from gateway_reports.services.aggregate_store import AggregateStore
from gateway_reports.services.errors import AggregatesUnavailableError, InvalidReportRangeError
from gateway_reports.services.outcome_store import OutcomeStore
from gateway_reports.time_utils import to_utc_naive

logger = structlog.get_logger(__name__)

AGGREGATED_GRANULARITIES = frozenset({Granularity.hour, Granularity.day, Granularity.month})


def validate_window(start: datetime, end: datetime, allow_empty: bool = True) -> Tuple[datetime, datetime]:
    """
    Convert a window to naive UTC and reject inverted ones.

    Args:
        start: Window start (naive UTC or aware)
        end: Window end (naive UTC or aware)
        allow_empty: Accept start == end (a single-instant window)

    Returns:
        (start, end) as naive UTC

    Raises:
        InvalidReportRangeError: end < start, or end == start when allow_empty is False
    """
    start = to_utc_naive(start)
    end = to_utc_naive(end)
    if end < start or (end == start and not allow_empty):
        raise InvalidReportRangeError(start, end)
    return start, end


def build_report(
    start: datetime,
    end: datetime,
    granularity: Granularity,
    counts: Mapping[datetime, Mapping[OutcomeCategory, int]],
    source: str,
) -> ReportResult:
    """
    Build a report with one slot per bucket from floor(start) to floor(end).

    Buckets missing from counts become zero slots.
    """
    slots = [
        TimeSlot.from_counts(bucket, granularity, counts.get(bucket, {}))
        for bucket in granularity.buckets(start, end)
    ]
    return ReportResult.from_slots(slots, granularity, source=source)


class ReportRepository:
    """
    Dual-mode report query engine.

    Blocking SQLAlchemy work runs in a worker thread via asyncio.to_thread, so
    the event loop stays free while a scan is in flight.
    """

    def __init__(self, outcome_store: OutcomeStore, aggregate_store: AggregateStore):
        self.outcome_store = outcome_store
        self.aggregate_store = aggregate_store

    async def raw_counts(
        self,
        start: datetime,
        end: datetime,
        granularity: Granularity,
        report_filter: Optional[ReportFilter] = None,
    ) -> ReportResult:
        """
        Count outcome records with start <= created_at <= end, bucketed by granularity.

        Args:
            start: Window start
            end: Window end (inclusive)
            granularity: Bucket width
            report_filter: Optional equality predicates

        Returns:
            ReportResult with source="raw"
        """
        start, end = validate_window(start, end)
        started = time.monotonic()

        rows = await asyncio.to_thread(self.outcome_store.scan, start, end, report_filter)

        counts: Dict[datetime, Dict[OutcomeCategory, int]] = {}
        for row in rows:
            bucket = counts.setdefault(granularity.floor(row.created_at), empty_category_counts())
            bucket[OutcomeCategory.from_status_code(row.status_code)] += 1

        result = build_report(start, end, granularity, counts, source="raw")
        logger.debug(
            "raw_report_built",
            granularity=granularity.value,
            records=len(rows),
            slots=len(result.time_slots),
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return result

    async def aggregated_counts(
        self,
        start: datetime,
        end: datetime,
        granularity: Granularity,
        report_filter: Optional[ReportFilter] = None,
    ) -> ReportResult:
        """
        Sum aggregate rows whose bucket_start lies in [floor(start), floor(end)].

        Args:
            start: Window start
            end: Window end (inclusive)
            granularity: Bucket width, must be an aggregated granularity
            report_filter: Must be empty; aggregates carry no filter dimension

        Returns:
            ReportResult with source="aggregate"

        Raises:
            AggregatesUnavailableError: filter is not empty or granularity is not aggregated
        """
        start, end = validate_window(start, end)
        if report_filter is not None and not report_filter.is_empty():
            raise AggregatesUnavailableError(
                f"Aggregates carry no filter dimension (filter: {report_filter.normalized_key()})"
            )
        if granularity not in AGGREGATED_GRANULARITIES:
            raise AggregatesUnavailableError(f"Granularity {granularity.value} is not aggregated")

        grouped = await asyncio.to_thread(
            self.aggregate_store.counts_by_bucket,
            granularity.floor(start),
            granularity.floor(end),
            granularity,
        )

        result = build_report(start, end, granularity, grouped, source="aggregate")
        logger.debug(
            "aggregate_report_built",
            granularity=granularity.value,
            buckets_with_data=len(grouped),
            slots=len(result.time_slots),
        )
        return result


__all__ = [
    "ReportRepository",
    "build_report",
    "validate_window",
    "AGGREGATED_GRANULARITIES",
]
