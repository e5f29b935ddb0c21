"""
Tests for ReportCache

Tests cover:
- Same instance on repeated gets, one repository call for concurrent gets
- Raw vs aggregate source selection (granularity, filter, recency)
- Invalidation forces a recompute
- TTL selection
- Validation, error propagation and timeouts
"""

import asyncio
import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, Mock

from sqlalchemy.exc import SQLAlchemyError

from gateway_reports.config import settings
from gateway_reports.models.report import Granularity, ReportFilter, ReportResult, TimeSlot
from gateway_reports.services.errors import InvalidReportRangeError
from gateway_reports.services.report_cache import REALTIME_TTL, ReportCache, build_cache_key

NOW = datetime(2024, 6, 15, 12, 0)


def make_result(*args, **kwargs) -> ReportResult:
    """A fresh, equal-valued result per call."""
    slots = [TimeSlot(bucket_start=datetime(2024, 6, 1), label="06/01", success=10, client_error=3, server_error=2)]
    return ReportResult.from_slots(slots, Granularity.day, source="raw")


@pytest.fixture
def repository():
    repository = Mock()
    repository.raw_counts = AsyncMock(side_effect=make_result)
    repository.aggregated_counts = AsyncMock(side_effect=make_result)
    return repository


@pytest.fixture
def report_cache(repository):
    return ReportCache(
        repository,
        default_ttl_minutes=30,
        short_ttl_minutes=2,
        recency_threshold_minutes=10,
        clock=lambda: NOW,
    )


class TestCaching:
    """Memoization and coalescing."""

    @pytest.mark.asyncio
    async def test_repeated_get_returns_same_instance(self, report_cache, repository):
        start, end = NOW - timedelta(days=3), NOW - timedelta(days=1)

        first = await report_cache.get(start, end, Granularity.day)
        second = await report_cache.get(start, end, Granularity.day)

        assert first is second
        assert repository.aggregated_counts.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_gets_call_repository_once(self, report_cache, repository):
        gate = asyncio.Event()

        async def slow_raw(*args, **kwargs):
            await gate.wait()
            return make_result()

        repository.raw_counts = AsyncMock(side_effect=slow_raw)
        start, end = NOW - timedelta(hours=2), NOW

        tasks = [asyncio.ensure_future(report_cache.get(start, end, Granularity.hour)) for _ in range(8)]
        for _ in range(5):
            await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks)

        assert repository.raw_counts.await_count == 1
        assert all(result is results[0] for result in results)

    @pytest.mark.asyncio
    async def test_invalidate_forces_recompute(self, report_cache, repository):
        start, end = NOW - timedelta(days=3), NOW - timedelta(days=1)
        first = await report_cache.get(start, end, Granularity.day)

        removed = report_cache.invalidate(start, end)
        second = await report_cache.get(start, end, Granularity.day)

        assert removed == 1
        assert second is not first
        assert second.total_requests == first.total_requests
        assert repository.aggregated_counts.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_leaves_other_windows(self, report_cache, repository):
        await report_cache.get(NOW - timedelta(days=10), NOW - timedelta(days=8), Granularity.day)
        await report_cache.get(NOW - timedelta(days=3), NOW - timedelta(days=1), Granularity.day)

        removed = report_cache.invalidate(NOW - timedelta(days=2), NOW - timedelta(days=1, hours=12))

        assert removed == 1
        assert len(report_cache.cache) == 1

    @pytest.mark.asyncio
    async def test_filters_get_separate_entries(self, report_cache, repository):
        start, end = NOW - timedelta(days=3), NOW - timedelta(days=1)

        unfiltered = await report_cache.get(start, end, Granularity.day)
        filtered = await report_cache.get(start, end, Granularity.day, ReportFilter(path="/a"))

        assert unfiltered is not filtered
        assert len(report_cache.cache) == 2


class TestSourceSelection:
    """use_aggregates = aggregated granularity AND empty filter AND NOT recent"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("granularity", [Granularity.hour, Granularity.day, Granularity.month])
    @pytest.mark.parametrize("report_filter,recent,expect_aggregate", [
        (ReportFilter(), False, True),
        (ReportFilter(path="/a"), False, False),
        (ReportFilter(), True, False),
        (ReportFilter(client_ip="10.0.0.1"), True, False),
    ])
    async def test_source(self, report_cache, repository, granularity, report_filter, recent, expect_aggregate):
        end = NOW - timedelta(minutes=5) if recent else NOW - timedelta(hours=2)
        start = end - timedelta(days=2)

        await report_cache.get(start, end, granularity, report_filter)

        if expect_aggregate:
            repository.aggregated_counts.assert_awaited_once()
            repository.raw_counts.assert_not_awaited()
        else:
            repository.raw_counts.assert_awaited_once()
            repository.aggregated_counts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recent_window_goes_raw(self, report_cache, repository):
        """A daily, unfiltered report ending five minutes ago is still read from raw records."""
        await report_cache.get(NOW - timedelta(days=7), NOW - timedelta(minutes=5), Granularity.day, ReportFilter())

        repository.raw_counts.assert_awaited_once()
        repository.aggregated_counts.assert_not_called()

    def test_recency_boundary(self, report_cache):
        assert report_cache.is_recent(NOW - timedelta(minutes=9, seconds=59))
        assert not report_cache.is_recent(NOW - timedelta(minutes=10))

    @pytest.mark.asyncio
    async def test_zero_recency_threshold_is_honoured(self, repository):
        report_cache = ReportCache(repository, recency_threshold_minutes=0, clock=lambda: NOW)

        await report_cache.get(NOW - timedelta(days=7), NOW - timedelta(minutes=5), Granularity.day)

        assert report_cache.recency_threshold == timedelta(0)
        repository.aggregated_counts.assert_awaited_once()
        repository.raw_counts.assert_not_called()

    def test_unset_options_fall_back_to_settings(self, repository):
        report_cache = ReportCache(repository, clock=lambda: NOW)

        assert report_cache.default_ttl == timedelta(minutes=settings.cache_default_ttl_minutes)
        assert report_cache.short_ttl == timedelta(minutes=settings.cache_short_ttl_minutes)
        assert report_cache.recency_threshold == timedelta(minutes=settings.cache_recency_threshold_minutes)


class TestTtl:
    """TTL table."""

    @pytest.mark.parametrize("start,end,expected", [
        (NOW - timedelta(days=5), NOW - timedelta(minutes=1), REALTIME_TTL),
        (NOW - timedelta(days=2, hours=1), NOW - timedelta(days=2), REALTIME_TTL),
        (NOW - timedelta(days=2, hours=6), NOW - timedelta(days=2), timedelta(minutes=2)),
        (NOW - timedelta(days=3), NOW - timedelta(days=2), timedelta(minutes=30)),
        (NOW - timedelta(days=30), NOW - timedelta(days=2), timedelta(minutes=30)),
    ])
    def test_calculate_ttl(self, report_cache, start, end, expected):
        assert report_cache.calculate_ttl(start, end) == expected

    def test_cache_key_uses_dates_and_filter(self):
        key = build_cache_key(
            datetime(2024, 6, 1, 8, 30),
            datetime(2024, 6, 3, 17, 0),
            Granularity.hour,
            ReportFilter(path="/a", client_ip="1.1.1.1"),
        )

        assert key == "reqreport:2024-06-01_2024-06-03:hour:client_ip:1.1.1.1_path:/a"
        assert build_cache_key(datetime(2024, 6, 1), datetime(2024, 6, 3), Granularity.day) == \
            "reqreport:2024-06-01_2024-06-03:day:"


class TestErrors:
    """Validation, propagation and deadlines."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("end_offset", [timedelta(0), timedelta(hours=-1)])
    async def test_empty_or_inverted_window_rejected(self, report_cache, repository, end_offset):
        start = NOW - timedelta(days=1)

        with pytest.raises(InvalidReportRangeError):
            await report_cache.get(start, start + end_offset, Granularity.day)

        repository.raw_counts.assert_not_called()
        repository.aggregated_counts.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_error_propagates_and_is_not_cached(self, report_cache, repository):
        repository.aggregated_counts = AsyncMock(side_effect=SQLAlchemyError("connection reset"))
        start, end = NOW - timedelta(days=3), NOW - timedelta(days=1)

        with pytest.raises(SQLAlchemyError):
            await report_cache.get(start, end, Granularity.day)

        assert len(report_cache.cache) == 0
        assert report_cache.cache.lock_count() == 0

    @pytest.mark.asyncio
    async def test_timeout(self, report_cache, repository):
        async def slow(*args, **kwargs):
            await asyncio.sleep(10)
            return make_result()

        repository.raw_counts = AsyncMock(side_effect=slow)

        with pytest.raises(asyncio.TimeoutError):
            await report_cache.get(NOW - timedelta(hours=1), NOW, Granularity.hour, timeout=0.05)

        assert len(report_cache.cache) == 0
        assert report_cache.cache.lock_count() == 0
