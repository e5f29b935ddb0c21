"""
Outcome Record Model

Raw, append-only request outcomes written by the gateway's logging sink.
Rows are never updated; reports and aggregates only read them.
"""

import uuid

from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, Text, Index
from gateway_reports.database import Base


class OutcomeRecord(Base):
    """
    One proxied request and its outcome.

    created_at is naive UTC. status_code is nullable: requests that never
    reached a downstream node have no code and count as "other".
    """
    __tablename__ = "outcome_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime, nullable=False)

    trace_id = Column(String(64), nullable=True)
    method = Column(String(10), nullable=True)
    path = Column(String(500), nullable=True)
    client_ip = Column(String(64), nullable=True)

    downstream_host = Column(String(255), nullable=True)
    downstream_port = Column(Integer, nullable=True)
    status_code = Column(Integer, nullable=True)

    latency_ms = Column(BigInteger, nullable=False, default=0)
    is_error = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)

    request_size = Column(BigInteger, nullable=False, default=0)
    response_size = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        Index("idx_outcome_records_created", "created_at"),
        Index("idx_outcome_records_path", "path"),
        Index("idx_outcome_records_host", "downstream_host"),
    )

    def __repr__(self):
        return f"<OutcomeRecord(id={self.id}, at={self.created_at}, status={self.status_code})>"
