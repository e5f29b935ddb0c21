"""
APScheduler Background Jobs

Scheduled jobs for aggregate rollup and cache maintenance.
Jobs run via BackgroundScheduler in FastAPI process.
"""

from datetime import datetime, timedelta

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gateway_reports.config import settings

logger = structlog.get_logger(__name__)


def run_scheduled_aggregation():
    """
    Wrapper function for the aggregation sweep.

    Called by APScheduler every aggregation_interval_minutes to recompute
    report_aggregates for the trailing lookback windows.
    """
    try:
        from gateway_reports.services.registry import get_services

        services = get_services()
        if services is None:
            logger.warning("aggregation_skipped", reason="database_not_configured")
            return

        services.worker.run_sweep()

    except Exception as e:
        logger.error("aggregation_crashed", error=str(e), exc_info=True)


def run_cache_maintenance():
    """
    Wrapper function for cache maintenance.

    Purges expired report and overview entries so idle keys release memory
    and their per-key locks.
    """
    try:
        from gateway_reports.services.registry import get_services

        services = get_services()
        if services is None:
            return

        purged_reports = services.report_cache.purge_expired()
        purged_overviews = services.overview_cache.purge_expired()
        if purged_reports or purged_overviews:
            logger.info(
                "cache_maintenance_completed",
                purged_reports=purged_reports,
                purged_overviews=purged_overviews,
            )

    except Exception as e:
        logger.error("cache_maintenance_crashed", error=str(e), exc_info=True)


def start_scheduler(environment: str = "production") -> BackgroundScheduler:
    """
    Start background scheduler with all jobs.

    Args:
        environment: Current environment (skip scheduler in testing)

    Returns:
        BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(timezone="UTC")

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    # Job 1: Aggregate rollup; first run shortly after startup
    scheduler.add_job(
        run_scheduled_aggregation,
        trigger=IntervalTrigger(minutes=settings.aggregation_interval_minutes),
        id="report_aggregation",
        name="Report Aggregate Rollup",
        next_run_time=datetime.now() + timedelta(seconds=settings.aggregation_startup_delay_seconds),
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )
    logger.info(
        "job_registered",
        job="report_aggregation",
        schedule=f"every_{settings.aggregation_interval_minutes}_minutes",
    )

    # Job 2: Cache maintenance
    scheduler.add_job(
        run_cache_maintenance,
        trigger=IntervalTrigger(seconds=settings.cache_maintenance_interval_seconds),
        id="cache_maintenance",
        name="Report Cache Maintenance",
        replace_existing=True
    )
    logger.info(
        "job_registered",
        job="cache_maintenance",
        schedule=f"every_{settings.cache_maintenance_interval_seconds}_seconds",
    )

    scheduler.start()
    logger.info("scheduler_started", jobs=["report_aggregation", "cache_maintenance"])

    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler):
    """
    Stop background scheduler gracefully.

    Args:
        scheduler: BackgroundScheduler instance to stop
    """
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


__all__ = [
    "start_scheduler",
    "stop_scheduler",
    "run_scheduled_aggregation",
    "run_cache_maintenance",
]
