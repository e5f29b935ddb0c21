"""
Tests for the APScheduler jobs

Tests cover:
- Testing environment registers no jobs
- Job wrappers never raise
- Cache maintenance purges expired entries
"""

from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest

from gateway_reports.scheduler import (
    run_cache_maintenance,
    run_scheduled_aggregation,
    start_scheduler,
    stop_scheduler,
)
from gateway_reports.services.registry import build_services, set_services


@pytest.fixture
def registered_services(session_factory):
    services = build_services(session_factory)
    set_services(services)
    yield services
    set_services(None)


class TestStartScheduler:

    def test_testing_environment_skips_jobs(self):
        scheduler = start_scheduler("testing")

        assert scheduler.get_jobs() == []
        assert not scheduler.running
        stop_scheduler(scheduler)

    def test_registers_both_jobs(self):
        with patch("gateway_reports.scheduler.BackgroundScheduler") as scheduler_cls:
            scheduler = start_scheduler("production")

        job_ids = [c.kwargs["id"] for c in scheduler.add_job.call_args_list]
        assert job_ids == ["report_aggregation", "cache_maintenance"]
        assert scheduler.add_job.call_args_list[0].kwargs["max_instances"] == 1
        scheduler.start.assert_called_once()
        scheduler_cls.assert_called_once_with(timezone="UTC")


class TestJobWrappers:

    def test_aggregation_without_database_is_noop(self):
        set_services(None)

        run_scheduled_aggregation()

    def test_aggregation_crash_is_logged_not_raised(self, registered_services):
        registered_services.worker = Mock()
        registered_services.worker.run_sweep.side_effect = RuntimeError("boom")

        run_scheduled_aggregation()

        registered_services.worker.run_sweep.assert_called_once()

    def test_aggregation_runs_sweep(self, registered_services):
        run_scheduled_aggregation()

        assert registered_services.worker.last_summary["status"] == "completed"

    @pytest.mark.asyncio
    async def test_cache_maintenance_purges_expired(self, registered_services):
        clock = {"now": 0.0}
        cache = registered_services.report_cache.cache
        cache._monotonic = lambda: clock["now"]

        async def compute():
            return object()

        await cache.get_or_compute("k", (datetime(2024, 1, 1), datetime(2024, 1, 2)), compute, timedelta(seconds=5))
        clock["now"] = 10.0

        run_cache_maintenance()

        assert len(cache) == 0
        assert cache.lock_count() == 0
