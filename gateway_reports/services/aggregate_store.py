"""
Aggregate Store

Reads and writes report_aggregates rows: (bucket_start, granularity, category) -> count.

Upsert is a full replace, never an increment. last_updated_at only moves when a
count actually changes, so re-running the worker over unchanged raw data leaves
every row bit-identical.
"""

from datetime import datetime
from typing import Dict, List, Mapping, Optional, Union

from sqlalchemy import and_, func
from sqlalchemy.orm import Session, sessionmaker
import structlog

from gateway_reports.models.report import Granularity, OutcomeCategory, empty_category_counts
from gateway_reports.models.report_aggregate import ReportAggregate
from gateway_reports.time_utils import utc_now

logger = structlog.get_logger(__name__)


class AggregateStore:
    """
    Session-per-call access to the report_aggregates table.

    Each upsert commits on its own, so one bucket's failure never touches another.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Args:
            session_factory: SQLAlchemy sessionmaker (not a session)
        """
        self.session_factory = session_factory

    def upsert(
        self,
        bucket_start: datetime,
        granularity: Granularity,
        counts: Mapping[Union[OutcomeCategory, int], int],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Replace the counts for one bucket.

        Categories missing from counts are written as zero, so a category that
        dropped to zero is recorded instead of left stale.

        Args:
            bucket_start: Bucket start (naive UTC, already floored to granularity)
            granularity: Bucket width
            counts: Category -> count
            now: Timestamp for last_updated_at (defaults to current UTC)

        Returns:
            Number of rows inserted or whose count changed
        """
        full_counts = empty_category_counts()
        for category, count in counts.items():
            if count < 0:
                raise ValueError(f"Negative count for category {category}: {count}")
            full_counts[OutcomeCategory(int(category))] = int(count)

        now = now or utc_now()
        changed = 0

        session: Session = self.session_factory()
        try:
            existing_rows = {
                row.category: row
                for row in session.query(ReportAggregate).filter(
                    and_(
                        ReportAggregate.bucket_start == bucket_start,
                        ReportAggregate.granularity == granularity.value,
                    )
                ).all()
            }

            for category, count in full_counts.items():
                existing = existing_rows.get(category.value)

                if existing:
                    if existing.count != count:
                        existing.count = count
                        existing.last_updated_at = now
                        changed += 1
                else:
                    session.add(ReportAggregate(
                        bucket_start=bucket_start,
                        granularity=granularity.value,
                        category=category.value,
                        count=count,
                        last_updated_at=now,
                    ))
                    changed += 1

            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if changed:
            logger.debug(
                "aggregate_upserted",
                bucket_start=bucket_start.isoformat(),
                granularity=granularity.value,
                rows_changed=changed,
                total=sum(full_counts.values()),
            )
        return changed

    def rows(
        self,
        first_bucket: datetime,
        last_bucket: datetime,
        granularity: Granularity,
    ) -> List[ReportAggregate]:
        """
        Rows of one granularity with first_bucket <= bucket_start <= last_bucket.
        """
        session: Session = self.session_factory()
        try:
            return session.query(ReportAggregate).filter(
                ReportAggregate.bucket_start >= first_bucket,
                ReportAggregate.bucket_start <= last_bucket,
                ReportAggregate.granularity == granularity.value,
            ).order_by(
                ReportAggregate.bucket_start,
                ReportAggregate.category,
            ).all()
        finally:
            session.close()

    def counts_by_bucket(
        self,
        first_bucket: datetime,
        last_bucket: datetime,
        granularity: Granularity,
    ) -> Dict[datetime, Dict[OutcomeCategory, int]]:
        """Summed counts grouped by bucket_start, then category."""
        grouped: Dict[datetime, Dict[OutcomeCategory, int]] = {}
        for row in self.rows(first_bucket, last_bucket, granularity):
            bucket = grouped.setdefault(row.bucket_start, empty_category_counts())
            bucket[OutcomeCategory(row.category)] += int(row.count)
        return grouped

    def last_updated(
        self,
        first_bucket: datetime,
        last_bucket: datetime,
        granularity: Granularity,
    ) -> Optional[datetime]:
        """
        Latest last_updated_at across the range, or None when nothing was aggregated yet.
        """
        session: Session = self.session_factory()
        try:
            return session.query(func.max(ReportAggregate.last_updated_at)).filter(
                ReportAggregate.bucket_start >= first_bucket,
                ReportAggregate.bucket_start <= last_bucket,
                ReportAggregate.granularity == granularity.value,
            ).scalar()
        finally:
            session.close()


__all__ = ["AggregateStore"]
