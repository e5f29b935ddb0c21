"""
Aggregation Worker

Rolls raw outcome_records up into report_aggregates for a trailing lookback
window, one granularity at a time:

    hour  -> last aggregation_hour_lookback_days (default 7)
    day   -> last aggregation_lookback_days (default 30)
    month -> last aggregation_month_lookback_months (default 12)

Every bucket is counted, upserted and committed on its own. A bucket that fails
is logged and counted and the sweep moves on. An OperationalError (connection
lost, database restarting) aborts the sweep instead; the whole sweep is retried
with exponential backoff, which is safe because upserts are full replaces.

Run every aggregation_interval_minutes by APScheduler (see scheduler.py).
"""

import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

import structlog
from sqlalchemy.exc import OperationalError

from gateway_reports.config import settings
from gateway_reports.models.report import Granularity
from gateway_reports.services.aggregate_store import AggregateStore
from gateway_reports.services.outcome_store import OutcomeStore
from gateway_reports.time_utils import utc_now

logger = structlog.get_logger(__name__)


class InvalidatableCache(Protocol):
    def invalidate(self, start: datetime, end: datetime) -> int: ...


class AggregationWorker:
    """
    Periodic recomputation of aggregate rows.

    Usage:
        worker = AggregationWorker(outcome_store, aggregate_store)
        worker.register_cache(report_cache)
        summary = worker.run_sweep()
    """

    def __init__(
        self,
        outcome_store: OutcomeStore,
        aggregate_store: AggregateStore,
        hour_lookback_days: Optional[int] = None,
        day_lookback_days: Optional[int] = None,
        month_lookback_months: Optional[int] = None,
        safety_margin_minutes: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_base_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            outcome_store: Raw record source
            aggregate_store: Aggregate row sink
            hour_lookback_days: Hourly lookback (defaults to settings)
            day_lookback_days: Daily lookback (defaults to settings)
            month_lookback_months: Monthly lookback (defaults to settings)
            safety_margin_minutes: Only buckets starting at or before now - margin are swept
            max_retries: Sweep retries on OperationalError (defaults to settings)
            retry_base_seconds: Backoff base; attempt n waits base * 2**n
            clock: Wall clock returning naive UTC (injectable for tests)
            sleep: Backoff sleep (injectable for tests)
        """
        self.outcome_store = outcome_store
        self.aggregate_store = aggregate_store

        def _pick(value, default):
            return default if value is None else value

        self.lookbacks = {
            Granularity.hour: _pick(hour_lookback_days, settings.aggregation_hour_lookback_days),
            Granularity.day: _pick(day_lookback_days, settings.aggregation_lookback_days),
            Granularity.month: _pick(month_lookback_months, settings.aggregation_month_lookback_months),
        }
        self.safety_margin = timedelta(
            minutes=_pick(safety_margin_minutes, settings.aggregation_safety_margin_minutes)
        )
        self.max_retries = _pick(max_retries, settings.aggregation_max_retries)
        self.retry_base_seconds = _pick(retry_base_seconds, settings.aggregation_retry_base_seconds)

        self._clock = clock
        self._sleep = sleep
        self._caches: List[InvalidatableCache] = []
        self._running = threading.Lock()
        self.last_summary: Optional[Dict[str, Any]] = None

    def register_cache(self, cache: InvalidatableCache) -> None:
        """Invalidate this cache for every bucket whose aggregates change."""
        self._caches.append(cache)

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def first_bucket(self, granularity: Granularity, now: datetime) -> datetime:
        """Oldest bucket start inside the lookback for granularity."""
        lookback = self.lookbacks[granularity]
        if granularity is Granularity.month:
            return granularity.advance(granularity.floor(now), -lookback)
        return granularity.floor(now - timedelta(days=lookback))

    def run_sweep(self, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        """
        Recompute every bucket in the lookback windows.

        Args:
            cancel: Checked between buckets; when set the sweep stops early

        Returns:
            dict: Sweep summary (status, buckets_processed, rows_changed, failures, ...)

        Raises:
            OperationalError: still failing after max_retries retries
        """
        if not self._running.acquire(blocking=False):
            logger.warning("aggregation_sweep_skipped", reason="previous_sweep_running")
            return {"status": "skipped", "reason": "previous_sweep_running"}

        try:
            attempt = 0
            while True:
                try:
                    summary = self._sweep(cancel)
                    summary["attempts"] = attempt + 1
                    self.last_summary = summary
                    return summary
                except OperationalError as e:
                    if attempt >= self.max_retries:
                        logger.error(
                            "aggregation_sweep_failed",
                            attempts=attempt + 1,
                            error=str(e),
                            exc_info=True,
                        )
                        raise
                    delay = self.retry_base_seconds * (2 ** attempt)
                    attempt += 1
                    logger.warning(
                        "aggregation_sweep_retry",
                        attempt=attempt,
                        max_retries=self.max_retries,
                        delay_seconds=delay,
                        error=str(e),
                    )
                    self._sleep(delay)
        finally:
            self._running.release()

    def aggregate_bucket(self, bucket_start: datetime, granularity: Granularity, now: datetime) -> int:
        """
        Recount one bucket and replace its aggregate rows.

        Returns:
            Number of rows changed
        """
        bucket_end = granularity.advance(bucket_start)
        counts = self.outcome_store.count_by_category(bucket_start, bucket_end)
        changed = self.aggregate_store.upsert(bucket_start, granularity, counts, now=now)

        if changed:
            for cache in self._caches:
                cache.invalidate(bucket_start, bucket_end)
        return changed

    def _sweep(self, cancel: Optional[threading.Event]) -> Dict[str, Any]:
        started = time.monotonic()
        now = self._clock()
        horizon = now - self.safety_margin

        logger.info("aggregation_sweep_started", now=now.isoformat(), horizon=horizon.isoformat())

        buckets_processed = 0
        rows_changed = 0
        failures = 0
        cancelled = False
        per_granularity: Dict[str, int] = {}

        for granularity in (Granularity.hour, Granularity.day, Granularity.month):
            processed = 0
            for bucket_start in granularity.buckets(self.first_bucket(granularity, now), horizon):
                if cancel is not None and cancel.is_set():
                    cancelled = True
                    break

                try:
                    rows_changed += self.aggregate_bucket(bucket_start, granularity, now)
                    processed += 1
                except OperationalError:
                    raise
                except Exception as e:
                    failures += 1
                    logger.error(
                        "aggregation_bucket_failed",
                        granularity=granularity.value,
                        bucket_start=bucket_start.isoformat(),
                        error=str(e),
                        exc_info=True,
                    )

            per_granularity[granularity.value] = processed
            buckets_processed += processed
            if cancelled:
                break

        summary = {
            "status": "cancelled" if cancelled else "completed",
            "buckets_processed": buckets_processed,
            "rows_changed": rows_changed,
            "failures": failures,
            "by_granularity": per_granularity,
            "duration_seconds": round(time.monotonic() - started, 3),
        }
        logger.info("aggregation_sweep_completed", **summary)
        return summary


__all__ = ["AggregationWorker", "InvalidatableCache"]
