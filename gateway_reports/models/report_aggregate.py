"""
Report Aggregate Model

Precomputed request counts per (bucket_start, granularity, category).
Written only by the aggregation worker; read by aggregate-backed reports.
"""

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Index
from gateway_reports.database import Base


class ReportAggregate(Base):
    """
    Materialized count for one bucket and outcome category.

    Upserts replace count outright (never increment), so re-running the
    worker over the same window is idempotent.
    """
    __tablename__ = "report_aggregates"

    # Primary Key
    id = Column(Integer, primary_key=True)

    bucket_start = Column(DateTime, nullable=False)
    granularity = Column(String(10), nullable=False)  # "hour" | "day" | "month"
    category = Column(Integer, nullable=False)  # 0 other, 2 success, 4 client error, 5 server error

    count = Column(BigInteger, nullable=False, default=0)
    last_updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        # One row per (bucket, granularity, category)
        Index("idx_report_aggregates_unique", "bucket_start", "granularity", "category", unique=True),
    )

    def __repr__(self):
        return (
            f"<ReportAggregate(bucket={self.bucket_start}, granularity={self.granularity}, "
            f"category={self.category}, count={self.count})>"
        )
