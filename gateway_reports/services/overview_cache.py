"""
Overview Cache

Same single-flight/TTL mechanics as the report cache, in front of the dashboard
overview. Two differences:

1. The key is built from a normalized window. Requested ranges are snapped to a
   grid whose coarseness grows with duration, so "approximately now" dashboard
   polls land on the same entry.
2. A miss fans out to five independent sub-queries that run concurrently and
   are joined before the composite is cached. If any sub-query fails, the rest
   are cancelled and the whole overview fails; partial results are never cached.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

import structlog

from gateway_reports.models.overview import OverviewResult
from gateway_reports.models.report import Granularity
from gateway_reports.services.cache import EvictionEvent, SingleFlightCache
from gateway_reports.services.overview_queries import OverviewQueries
from gateway_reports.services.report_repository import validate_window
from gateway_reports.time_utils import to_utc_naive, utc_now

logger = structlog.get_logger(__name__)

FIVE_MINUTES = timedelta(minutes=5)
QUARTER_HOUR = timedelta(minutes=15)
HISTORICAL_AFTER = timedelta(days=1)
HISTORICAL_TTL = timedelta(hours=6)


def _ceil(value: datetime, granularity: Granularity) -> datetime:
    floored = granularity.floor(value)
    return floored if floored == value else granularity.advance(floored)


def _snap_quarter_hour(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """Round start to the nearest 5 minutes and fix the window at 15 minutes."""
    floored = start.replace(minute=start.minute - start.minute % 5, second=0, microsecond=0)
    rounded = floored + FIVE_MINUTES if start - floored >= FIVE_MINUTES / 2 else floored
    return rounded, rounded + QUARTER_HOUR


def _snap_to(granularity: Granularity) -> Callable[[datetime, datetime], Tuple[datetime, datetime]]:
    def snap(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
        return granularity.floor(start), _ceil(end, granularity)
    return snap


@dataclass(frozen=True)
class RangeBand:
    max_duration: Optional[timedelta]  # None = no upper bound
    snap: Callable[[datetime, datetime], Tuple[datetime, datetime]]
    ttl: timedelta


@dataclass(frozen=True)
class NormalizedRange:
    start: datetime
    end: datetime
    ttl: timedelta


# Ordered: the first band whose max_duration covers the requested duration wins
RANGE_BANDS: Tuple[RangeBand, ...] = (
    RangeBand(QUARTER_HOUR, _snap_quarter_hour, timedelta(seconds=30)),
    RangeBand(timedelta(days=1), _snap_to(Granularity.hour), timedelta(minutes=2)),
    RangeBand(timedelta(days=7), _snap_to(Granularity.day), timedelta(minutes=10)),
    RangeBand(timedelta(days=30), _snap_to(Granularity.day), timedelta(minutes=30)),
    RangeBand(None, _snap_to(Granularity.month), timedelta(hours=6)),
)


def normalize_time_range(
    start: datetime,
    end: datetime,
    now: datetime,
    bands: Tuple[RangeBand, ...] = RANGE_BANDS,
) -> NormalizedRange:
    """
    Snap a window to the grid for its duration and pick its TTL.

    Windows whose normalized end is more than a day in the past are historical
    and get at least HISTORICAL_TTL.

    Args:
        start: Requested start (naive UTC)
        end: Requested end (naive UTC)
        now: Current time (naive UTC)
        bands: Ordered range bands

    Returns:
        NormalizedRange(start, end, ttl)
    """
    duration = end - start
    band = next(b for b in bands if b.max_duration is None or duration <= b.max_duration)
    normalized_start, normalized_end = band.snap(start, end)

    ttl = band.ttl
    if now - normalized_end > HISTORICAL_AFTER:
        ttl = max(ttl, HISTORICAL_TTL)
    return NormalizedRange(start=normalized_start, end=normalized_end, ttl=ttl)


def build_overview_key(normalized: NormalizedRange) -> str:
    return f"overview:{normalized.start:%Y%m%d%H%M}-{normalized.end:%Y%m%d%H%M}"


class OverviewCache:
    """
    Coalescing cache for the dashboard overview.

    Usage:
        cache = OverviewCache(OverviewQueries(outcome_store, node_health))
        overview = await cache.get(now - timedelta(hours=1), now)
    """

    def __init__(
        self,
        queries: OverviewQueries,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.queries = queries
        self._clock = clock
        self.cache = SingleFlightCache("overview", monotonic=monotonic)
        self.cache.subscribe(self._log_eviction)

    async def get(self, start: datetime, end: datetime, timeout: Optional[float] = None) -> OverviewResult:
        """
        Return the overview for the normalized version of [start, end].

        Args:
            start: Requested start
            end: Requested end, must be after start
            timeout: Optional deadline in seconds for wait + fan-out

        Raises:
            InvalidReportRangeError: end <= start
            asyncio.TimeoutError: deadline exceeded; sub-queries are cancelled
        """
        start, end = validate_window(start, end, allow_empty=False)
        normalized = normalize_time_range(start, end, self._clock())
        key = build_overview_key(normalized)

        async def compute() -> OverviewResult:
            logger.info(
                "overview_cache_miss",
                key=key,
                requested_start=start.isoformat(),
                requested_end=end.isoformat(),
            )
            return await self._compose(normalized.start, normalized.end)

        lookup = self.cache.get_or_compute(key, (normalized.start, normalized.end), compute, normalized.ttl)
        if timeout is None:
            return await lookup
        return await asyncio.wait_for(lookup, timeout)

    def invalidate(self, start: datetime, end: datetime) -> int:
        removed = self.cache.invalidate(to_utc_naive(start), to_utc_naive(end))
        if removed:
            logger.info("overview_cache_invalidated", removed=removed)
        return removed

    def purge_expired(self) -> int:
        return self.cache.purge_expired()

    async def _compose(self, start: datetime, end: datetime) -> OverviewResult:
        tasks = [
            asyncio.ensure_future(self.queries.totals(start, end)),
            asyncio.ensure_future(self.queries.request_timeline(start, end)),
            asyncio.ensure_future(self.queries.latency_timeline(start, end)),
            asyncio.ensure_future(self.queries.status_distribution(start, end)),
            asyncio.ensure_future(self.queries.node_health_counts()),
        ]
        try:
            totals, request_timeline, latency_timeline, distribution, node_counts = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            # Collect every outcome so no sibling failure goes unretrieved
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        total_nodes, nodes_down = node_counts
        return OverviewResult(
            window_start=start,
            window_end=end,
            total_nodes=total_nodes,
            nodes_down=nodes_down,
            total_requests=totals.total_requests,
            error_requests=totals.error_requests,
            error_rate=totals.error_rate,
            avg_latency_ms=totals.avg_latency_ms,
            request_timeline=request_timeline,
            latency_timeline=latency_timeline,
            status_distribution=distribution,
        )

    def _log_eviction(self, event: EvictionEvent) -> None:
        logger.debug("overview_cache_evicted", key=event.key, reason=event.reason.value)


__all__ = [
    "OverviewCache",
    "RangeBand",
    "NormalizedRange",
    "RANGE_BANDS",
    "normalize_time_range",
    "build_overview_key",
]
