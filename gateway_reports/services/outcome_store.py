"""
Outcome Store
SQLAlchemy access to raw outcome records: the write sink, range scans and paged reads
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from math import ceil
from typing import Dict, List, Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session, sessionmaker

from gateway_reports.models.outcome_record import OutcomeRecord
from gateway_reports.models.overview import OverviewTotals
from gateway_reports.models.report import OutcomeCategory, ReportFilter, empty_category_counts


# status_code -> OutcomeCategory value, evaluated in SQL
CATEGORY_EXPR = case(
    (and_(OutcomeRecord.status_code >= 200, OutcomeRecord.status_code < 300), OutcomeCategory.success.value),
    (and_(OutcomeRecord.status_code >= 400, OutcomeRecord.status_code < 500), OutcomeCategory.client_error.value),
    (and_(OutcomeRecord.status_code >= 500, OutcomeRecord.status_code < 600), OutcomeCategory.server_error.value),
    else_=OutcomeCategory.other.value,
)


@dataclass
class OutcomePage:
    """One page of outcome records, newest first."""
    total_count: int
    total_pages: int
    page: int
    page_size: int
    records: List[OutcomeRecord] = field(default_factory=list)


def _apply_filter(stmt, report_filter: Optional[ReportFilter]):
    if report_filter is None:
        return stmt
    for column_name, value in report_filter.predicates().items():
        stmt = stmt.where(getattr(OutcomeRecord, column_name) == value)
    return stmt


class OutcomeStore:
    """
    Thin adapter over the outcome_records table.

    Every call opens and closes its own session from session_factory, so
    the store is safe to share between request threads and the worker.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Args:
            session_factory: SQLAlchemy sessionmaker (not a session)
        """
        self.session_factory = session_factory

    def write(self, record: OutcomeRecord) -> str:
        """
        Persist one outcome record. Records are immutable once written.

        Args:
            record: Unsaved OutcomeRecord

        Returns:
            The record id
        """
        if record.id is None:
            record.id = str(uuid.uuid4())
        record_id = record.id

        session: Session = self.session_factory()
        try:
            session.add(record)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        return record_id

    def scan(
        self,
        start: datetime,
        end: datetime,
        report_filter: Optional[ReportFilter] = None,
    ) -> List:
        """
        Read (created_at, status_code, latency_ms, is_error) rows with start <= created_at <= end.

        Args:
            start: Window start (naive UTC, inclusive)
            end: Window end (naive UTC, inclusive)
            report_filter: Optional equality predicates

        Returns:
            List of row tuples ordered by created_at
        """
        stmt = select(
            OutcomeRecord.created_at,
            OutcomeRecord.status_code,
            OutcomeRecord.latency_ms,
            OutcomeRecord.is_error,
        ).where(
            OutcomeRecord.created_at >= start,
            OutcomeRecord.created_at <= end,
        )
        stmt = _apply_filter(stmt, report_filter).order_by(OutcomeRecord.created_at)

        session: Session = self.session_factory()
        try:
            return list(session.execute(stmt).all())
        finally:
            session.close()

    def count_by_category(self, start: datetime, end: datetime) -> Dict[OutcomeCategory, int]:
        """
        Count records per outcome category in the half-open range [start, end).

        Every category is present in the result, zero when absent.
        """
        stmt = select(
            CATEGORY_EXPR.label("category"),
            func.count().label("count"),
        ).where(
            OutcomeRecord.created_at >= start,
            OutcomeRecord.created_at < end,
        ).group_by(CATEGORY_EXPR)

        session: Session = self.session_factory()
        try:
            rows = session.execute(stmt).all()
        finally:
            session.close()

        counts = empty_category_counts()
        for row in rows:
            counts[OutcomeCategory(row.category)] += int(row.count)
        return counts

    def totals(self, start: datetime, end: datetime) -> OverviewTotals:
        """Request count, error count and summed latency for start <= created_at <= end."""
        stmt = select(
            func.count().label("total_requests"),
            func.coalesce(func.sum(case((OutcomeRecord.is_error.is_(True), 1), else_=0)), 0).label("error_requests"),
            func.coalesce(func.sum(OutcomeRecord.latency_ms), 0).label("total_latency_ms"),
        ).where(
            OutcomeRecord.created_at >= start,
            OutcomeRecord.created_at <= end,
        )

        session: Session = self.session_factory()
        try:
            row = session.execute(stmt).one()
        finally:
            session.close()

        return OverviewTotals(
            total_requests=int(row.total_requests or 0),
            error_requests=int(row.error_requests or 0),
            total_latency_ms=int(row.total_latency_ms or 0),
        )

    def status_code_counts(self, start: datetime, end: datetime) -> Dict[int, int]:
        """Counts per exact status code; records without a code are skipped."""
        stmt = select(
            OutcomeRecord.status_code,
            func.count().label("count"),
        ).where(
            OutcomeRecord.created_at >= start,
            OutcomeRecord.created_at <= end,
            OutcomeRecord.status_code.is_not(None),
        ).group_by(OutcomeRecord.status_code)

        session: Session = self.session_factory()
        try:
            return {int(row.status_code): int(row.count) for row in session.execute(stmt).all()}
        finally:
            session.close()

    def page(
        self,
        report_filter: Optional[ReportFilter] = None,
        page: int = 1,
        page_size: int = 50,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> OutcomePage:
        """
        Paginated read, newest first.

        Args:
            report_filter: Optional equality predicates
            page: 1-based page number
            page_size: Records per page
            start: Optional inclusive lower bound on created_at
            end: Optional inclusive upper bound on created_at

        Returns:
            OutcomePage with total_count and total_pages for the whole filter
        """
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")

        stmt = select(OutcomeRecord)
        if start is not None:
            stmt = stmt.where(OutcomeRecord.created_at >= start)
        if end is not None:
            stmt = stmt.where(OutcomeRecord.created_at <= end)
        stmt = _apply_filter(stmt, report_filter)

        session: Session = self.session_factory()
        try:
            total_count = session.execute(
                select(func.count()).select_from(stmt.subquery())
            ).scalar_one()
            records = list(
                session.execute(
                    stmt.order_by(OutcomeRecord.created_at.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                ).scalars().all()
            )
        finally:
            session.close()

        return OutcomePage(
            total_count=total_count,
            total_pages=ceil(total_count / page_size) if total_count else 0,
            page=page,
            page_size=page_size,
            records=records,
        )


__all__ = ["OutcomeStore", "OutcomePage", "CATEGORY_EXPR"]
