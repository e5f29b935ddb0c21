"""
Tests for ReportRepository

Tests cover:
- Raw path bucketing, classification and zero-fill
- Aggregate path sums and filter rejection
- Range validation before any store access
- Raw and aggregate paths agree on the same data
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from gateway_reports.models.report import Granularity, ReportFilter
from gateway_reports.services.errors import AggregatesUnavailableError, InvalidReportRangeError
from gateway_reports.services.report_repository import ReportRepository

DAY0 = datetime(2024, 1, 1)
DAY3 = DAY0 + timedelta(days=3)


def seed_three_days(add_records):
    """45 records per day, 30 minutes apart: 30 success, 9 client errors, 6 server errors."""
    records = []
    for day in range(3):
        for i in range(45):
            status = 200 if i < 30 else 404 if i < 39 else 500
            records.append((DAY0 + timedelta(days=day, minutes=30 * i), status))
    add_records(*records)


@pytest.fixture
def repository(outcome_store, aggregate_store):
    return ReportRepository(outcome_store, aggregate_store)


class TestRawCounts:
    """Scan-and-bucket path."""

    @pytest.mark.asyncio
    async def test_three_day_totals(self, repository, add_records):
        seed_three_days(add_records)

        result = await repository.raw_counts(DAY0, DAY3, Granularity.day)

        assert result.source == "raw"
        assert result.total_requests == 135
        assert result.success_requests == 90
        assert result.client_error_requests == 27
        assert result.server_error_requests == 18
        assert result.other_requests == 0
        assert [slot.total for slot in result.time_slots] == [45, 45, 45, 0]
        assert [slot.label for slot in result.time_slots] == ["01/01", "01/02", "01/03", "01/04"]

    @pytest.mark.asyncio
    async def test_hourly_slots_are_zero_filled(self, repository, add_records):
        seed_three_days(add_records)

        result = await repository.raw_counts(DAY0, DAY3, Granularity.hour)

        assert len(result.time_slots) == 73
        assert result.total_requests == 135
        assert sum(slot.total for slot in result.time_slots) == result.total_requests
        # 45 records at 30 minute spacing end at 22:00; 23:00 is empty
        assert result.time_slots[23].total == 0
        assert result.time_slots[0].total == 2

    @pytest.mark.asyncio
    async def test_filter_is_applied(self, repository, add_records):
        add_records(
            (DAY0, 200, {"path": "/a"}),
            (DAY0, 500, {"path": "/a"}),
            (DAY0, 200, {"path": "/b"}),
        )

        result = await repository.raw_counts(DAY0, DAY0 + timedelta(hours=1), Granularity.hour, ReportFilter(path="/a"))

        assert result.total_requests == 2
        assert result.server_error_requests == 1

    @pytest.mark.asyncio
    async def test_missing_status_counts_as_other(self, repository, add_records):
        add_records((DAY0, None), (DAY0, 302))

        result = await repository.raw_counts(DAY0, DAY0, Granularity.day)

        assert result.other_requests == 2
        assert result.total_requests == 2

    @pytest.mark.asyncio
    async def test_aware_datetimes_are_converted(self, repository, add_records):
        add_records((DAY0 + timedelta(hours=10), 200))
        plus_two = timezone(timedelta(hours=2))

        result = await repository.raw_counts(
            datetime(2024, 1, 1, 12, tzinfo=plus_two),
            datetime(2024, 1, 1, 12, 30, tzinfo=plus_two),
            Granularity.hour,
        )

        assert result.total_requests == 1
        assert result.time_slots[0].bucket_start == DAY0 + timedelta(hours=10)


class TestAggregatedCounts:
    """Sum-of-aggregates path."""

    @pytest.mark.asyncio
    async def test_single_day_sum(self, repository, aggregate_store):
        aggregate_store.upsert(DAY0, Granularity.day, {2: 100, 4: 20, 5: 5, 0: 1})

        result = await repository.aggregated_counts(DAY0, DAY0, Granularity.day, ReportFilter())

        assert result.source == "aggregate"
        assert result.total_requests == 126
        assert result.success_requests == 100
        assert result.client_error_requests == 20
        assert result.server_error_requests == 5
        assert result.other_requests == 1
        assert len(result.time_slots) == 1

    @pytest.mark.asyncio
    async def test_only_buckets_in_range(self, repository, aggregate_store):
        aggregate_store.upsert(DAY0 - timedelta(days=1), Granularity.day, {2: 50})
        aggregate_store.upsert(DAY0, Granularity.day, {2: 3})
        aggregate_store.upsert(DAY0 + timedelta(days=1), Granularity.day, {2: 4})
        aggregate_store.upsert(DAY0 + timedelta(days=2), Granularity.day, {2: 60})

        result = await repository.aggregated_counts(
            DAY0 + timedelta(hours=5),
            DAY0 + timedelta(days=1, hours=1),
            Granularity.day,
        )

        assert result.total_requests == 7
        assert [slot.total for slot in result.time_slots] == [3, 4]

    @pytest.mark.asyncio
    async def test_filtered_query_rejected(self, repository):
        with pytest.raises(AggregatesUnavailableError):
            await repository.aggregated_counts(DAY0, DAY3, Granularity.day, ReportFilter(path="/a"))

    @pytest.mark.asyncio
    async def test_raw_and_aggregate_agree(self, repository, aggregate_store, outcome_store, add_records):
        seed_three_days(add_records)
        for bucket in Granularity.day.buckets(DAY0, DAY3):
            aggregate_store.upsert(
                bucket,
                Granularity.day,
                outcome_store.count_by_category(bucket, Granularity.day.advance(bucket)),
            )

        raw = await repository.raw_counts(DAY0, DAY3 - timedelta(seconds=1), Granularity.day)
        aggregated = await repository.aggregated_counts(DAY0, DAY3 - timedelta(seconds=1), Granularity.day)

        assert raw == aggregated
        assert raw.source != aggregated.source


class TestValidation:
    """Inverted windows never reach a store."""

    @pytest.mark.asyncio
    async def test_inverted_window_rejected_before_store_access(self):
        outcome_store = Mock()
        aggregate_store = Mock()
        repository = ReportRepository(outcome_store, aggregate_store)

        with pytest.raises(InvalidReportRangeError):
            await repository.raw_counts(DAY3, DAY0, Granularity.day)
        with pytest.raises(InvalidReportRangeError):
            await repository.aggregated_counts(DAY3, DAY0, Granularity.day)

        outcome_store.scan.assert_not_called()
        aggregate_store.counts_by_bucket.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_range_is_a_value_error(self, repository):
        with pytest.raises(ValueError):
            await repository.raw_counts(DAY3, DAY0, Granularity.hour)

    @pytest.mark.asyncio
    async def test_empty_store_gives_zero_slots(self, repository):
        result = await repository.raw_counts(DAY0, DAY0 + timedelta(hours=2), Granularity.hour)

        assert result.total_requests == 0
        assert [slot.total for slot in result.time_slots] == [0, 0, 0]
        assert all(slot.other == 0 for slot in result.time_slots)
