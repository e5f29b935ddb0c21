"""
Report Cache

Single-flight, TTL-governed cache in front of ReportRepository. Owns the
raw-vs-aggregate source decision:

    is_recent      = (now - end) < recency threshold (default 10 min)
    use_aggregates = granularity is aggregated AND filter is empty AND NOT is_recent

Aggregates lag the worker's cadence and carry no filter dimension, so very
recent windows and every filtered query go to the raw path.

TTL (sliding):
    window ends inside the recency threshold, or lasts <= 1 hour  -> 30 seconds
    window shorter than 1 day                                     -> short TTL (default 2 min)
    otherwise                                                     -> default TTL (default 30 min)
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from gateway_reports.config import settings
from gateway_reports.models.report import Granularity, ReportFilter, ReportResult
from gateway_reports.services.cache import EvictionEvent, SingleFlightCache
from gateway_reports.services.report_repository import (
    AGGREGATED_GRANULARITIES,
    ReportRepository,
    validate_window,
)
from gateway_reports.time_utils import to_utc_naive, utc_now

logger = structlog.get_logger(__name__)

REALTIME_TTL = timedelta(seconds=30)


def build_cache_key(
    start: datetime,
    end: datetime,
    granularity: Granularity,
    report_filter: Optional[ReportFilter] = None,
) -> str:
    """
    Canonical report cache key: reqreport:{start date}_{end date}:{granularity}:{filter}.

    Only the dates of start and end take part, so windows on the same days share an entry.
    """
    filter_key = report_filter.normalized_key() if report_filter else ""
    return f"reqreport:{start:%Y-%m-%d}_{end:%Y-%m-%d}:{granularity.value}:{filter_key}"


class ReportCache:
    """
    Coalescing report cache with overlap invalidation.

    Usage:
        cache = ReportCache(repository)
        report = await cache.get(start, end, Granularity.day)
        cache.invalidate(changed_start, changed_end)
    """

    def __init__(
        self,
        repository: ReportRepository,
        default_ttl_minutes: Optional[int] = None,
        short_ttl_minutes: Optional[int] = None,
        recency_threshold_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            repository: Report query engine
            default_ttl_minutes: TTL for windows of a day or more (defaults to settings)
            short_ttl_minutes: TTL for windows under a day (defaults to settings)
            recency_threshold_minutes: Windows ending inside this go raw (defaults to settings)
            clock: Wall clock returning naive UTC (injectable for tests)
            monotonic: Clock for TTL bookkeeping (injectable for tests)
        """
        self.repository = repository

        def _pick(value, default):
            return default if value is None else value

        self.default_ttl = timedelta(minutes=_pick(default_ttl_minutes, settings.cache_default_ttl_minutes))
        self.short_ttl = timedelta(minutes=_pick(short_ttl_minutes, settings.cache_short_ttl_minutes))
        self.recency_threshold = timedelta(
            minutes=_pick(recency_threshold_minutes, settings.cache_recency_threshold_minutes)
        )
        self._clock = clock
        self.cache = SingleFlightCache("report", monotonic=monotonic)
        self.cache.subscribe(self._log_eviction)

    def is_recent(self, end: datetime, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        return (now - end) < self.recency_threshold

    def should_use_aggregates(
        self,
        end: datetime,
        granularity: Granularity,
        report_filter: Optional[ReportFilter],
        now: Optional[datetime] = None,
    ) -> bool:
        """Source selection: aggregates only for aggregated, unfiltered, non-recent windows."""
        filter_empty = report_filter is None or report_filter.is_empty()
        return (
            granularity in AGGREGATED_GRANULARITIES
            and filter_empty
            and not self.is_recent(end, now)
        )

    def calculate_ttl(self, start: datetime, end: datetime, now: Optional[datetime] = None) -> timedelta:
        """Shorter TTL for fresh or small windows, longer for historical ones."""
        duration = end - start
        if self.is_recent(end, now) or duration <= timedelta(hours=1):
            return REALTIME_TTL
        if duration < timedelta(days=1):
            return self.short_ttl
        return self.default_ttl

    async def get(
        self,
        start: datetime,
        end: datetime,
        granularity: Granularity,
        report_filter: Optional[ReportFilter] = None,
        timeout: Optional[float] = None,
    ) -> ReportResult:
        """
        Return the report for a window, computing it at most once per key concurrently.

        Args:
            start: Window start
            end: Window end, must be after start
            granularity: Bucket width
            report_filter: Optional equality predicates
            timeout: Optional deadline in seconds for wait + compute

        Returns:
            ReportResult (same instance for every caller inside the TTL)

        Raises:
            InvalidReportRangeError: end <= start (before any store access)
            asyncio.TimeoutError: deadline exceeded; nothing is cached
        """
        start, end = validate_window(start, end, allow_empty=False)
        report_filter = report_filter or ReportFilter()
        key = build_cache_key(start, end, granularity, report_filter)

        async def compute() -> ReportResult:
            use_aggregates = self.should_use_aggregates(end, granularity, report_filter)
            logger.info(
                "report_cache_miss",
                key=key,
                source="aggregate" if use_aggregates else "raw",
                has_filter=not report_filter.is_empty(),
            )
            if use_aggregates:
                return await self.repository.aggregated_counts(start, end, granularity, report_filter)
            return await self.repository.raw_counts(start, end, granularity, report_filter)

        lookup = self.cache.get_or_compute(
            key,
            (start, end),
            compute,
            ttl=lambda: self.calculate_ttl(start, end),
        )
        if timeout is None:
            return await lookup
        return await asyncio.wait_for(lookup, timeout)

    def invalidate(self, start: datetime, end: datetime) -> int:
        """
        Remove every cached report whose window overlaps [start, end).

        Returns:
            Number of entries removed
        """
        start = to_utc_naive(start)
        end = to_utc_naive(end)
        removed = self.cache.invalidate(start, end)
        if removed:
            logger.info(
                "report_cache_invalidated",
                start=start.isoformat(),
                end=end.isoformat(),
                removed=removed,
            )
        return removed

    def purge_expired(self) -> int:
        return self.cache.purge_expired()

    def _log_eviction(self, event: EvictionEvent) -> None:
        logger.debug("report_cache_evicted", key=event.key, reason=event.reason.value)


__all__ = ["ReportCache", "build_cache_key", "REALTIME_TTL"]
