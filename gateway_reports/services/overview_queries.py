"""
Overview Sub-Queries

Independent queries behind the dashboard overview: totals, request timeline,
latency timeline, status distribution and node health counts. Each one is its
own coroutine so the overview cache can run them concurrently.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from gateway_reports.models.overview import OverviewTotals, StatusBucket, TimelinePoint
from gateway_reports.models.report import Granularity
from gateway_reports.services.node_health import NodeHealthStore
from gateway_reports.services.outcome_store import OutcomeStore


def _floor_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def _floor_hour(value: datetime) -> datetime:
    return value.replace(minute=0, second=0, microsecond=0)


def _floor_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _step_by(delta: timedelta) -> Callable[[datetime], datetime]:
    def step(value: datetime) -> datetime:
        return value + delta
    return step


@dataclass(frozen=True)
class TimelineResolution:
    max_duration: Optional[timedelta]  # None = no upper bound
    floor: Callable[[datetime], datetime]
    step: Callable[[datetime], datetime]  # bucket start -> next bucket start
    label_format: str


TIMELINE_RESOLUTIONS: Tuple[TimelineResolution, ...] = (
    TimelineResolution(timedelta(hours=1), _floor_minute, _step_by(timedelta(minutes=1)), "%H:%M"),
    TimelineResolution(timedelta(days=1), _floor_hour, _step_by(timedelta(hours=1)), "%H:00"),
    TimelineResolution(timedelta(days=30), _floor_day, _step_by(timedelta(days=1)), "%Y-%m-%d"),
    TimelineResolution(None, Granularity.month.floor, Granularity.month.advance, "%Y-%m"),
)


def timeline_resolution(start: datetime, end: datetime) -> TimelineResolution:
    """Pick the bucket width for a window: minutes up to 1h, hours up to 1 day, days up to 30 days, then months."""
    duration = end - start
    for resolution in TIMELINE_RESOLUTIONS:
        if resolution.max_duration is None or duration <= resolution.max_duration:
            return resolution
    return TIMELINE_RESOLUTIONS[-1]


def _timeline_buckets(start: datetime, end: datetime, resolution: TimelineResolution) -> List[datetime]:
    buckets = []
    current = resolution.floor(start)
    while current <= end:
        buckets.append(current)
        current = resolution.step(current)
    return buckets


class OverviewQueries:
    """
    Overview sub-queries over the outcome store and the node health snapshot.

    All methods are coroutines; blocking store access runs via asyncio.to_thread.
    """

    def __init__(self, outcome_store: OutcomeStore, node_health: NodeHealthStore):
        self.outcome_store = outcome_store
        self.node_health = node_health

    async def totals(self, start: datetime, end: datetime) -> OverviewTotals:
        return await asyncio.to_thread(self.outcome_store.totals, start, end)

    async def request_timeline(self, start: datetime, end: datetime) -> Tuple[TimelinePoint, ...]:
        """Request count per bucket, zero-filled."""
        resolution = timeline_resolution(start, end)
        rows = await asyncio.to_thread(self.outcome_store.scan, start, end)

        counts: Dict[datetime, int] = {}
        for row in rows:
            bucket = resolution.floor(row.created_at)
            counts[bucket] = counts.get(bucket, 0) + 1

        return tuple(
            TimelinePoint(timestamp=bucket.strftime(resolution.label_format), value=counts.get(bucket, 0))
            for bucket in _timeline_buckets(start, end, resolution)
        )

    async def latency_timeline(self, start: datetime, end: datetime) -> Tuple[TimelinePoint, ...]:
        """Average latency (ms, rounded) per bucket; empty buckets are 0."""
        resolution = timeline_resolution(start, end)
        rows = await asyncio.to_thread(self.outcome_store.scan, start, end)

        sums: Dict[datetime, List[int]] = {}
        for row in rows:
            bucket = sums.setdefault(resolution.floor(row.created_at), [0, 0])
            bucket[0] += int(row.latency_ms or 0)
            bucket[1] += 1

        points = []
        for bucket in _timeline_buckets(start, end, resolution):
            total, count = sums.get(bucket, (0, 0))
            points.append(TimelinePoint(
                timestamp=bucket.strftime(resolution.label_format),
                value=round(total / count) if count else 0,
            ))
        return tuple(points)

    async def status_distribution(self, start: datetime, end: datetime) -> Tuple[StatusBucket, ...]:
        """Counts per status family ("2xx", "4xx", ...), sorted by label. Records without a code are skipped."""
        code_counts = await asyncio.to_thread(self.outcome_store.status_code_counts, start, end)

        families: Dict[str, int] = {}
        for code, count in code_counts.items():
            label = f"{code // 100}xx"
            families[label] = families.get(label, 0) + count

        return tuple(StatusBucket(label=label, count=families[label]) for label in sorted(families))

    async def node_health_counts(self) -> Tuple[int, int]:
        """(total_nodes, nodes_down) from the latest health snapshot."""
        return await asyncio.to_thread(self.node_health.counts)


__all__ = [
    "OverviewQueries",
    "TimelineResolution",
    "TIMELINE_RESOLUTIONS",
    "timeline_resolution",
]
