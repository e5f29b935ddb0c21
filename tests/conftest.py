"""
Shared fixtures: a throwaway SQLite database, the stores on top of it, and a
record factory.
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from gateway_reports.database import Base
from gateway_reports.models import OutcomeRecord, ReportAggregate  # noqa: F401
from gateway_reports.services.aggregate_store import AggregateStore
from gateway_reports.services.outcome_store import OutcomeStore


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so worker threads each get their own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'reports.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def outcome_store(session_factory):
    return OutcomeStore(session_factory)


@pytest.fixture
def aggregate_store(session_factory):
    return AggregateStore(session_factory)


def make_record(created_at: datetime, status_code=200, **overrides) -> OutcomeRecord:
    """Build an unsaved OutcomeRecord with sensible defaults."""
    fields = {
        "created_at": created_at,
        "method": "GET",
        "path": "/api/items",
        "client_ip": "10.0.0.1",
        "downstream_host": "node-a",
        "downstream_port": 8080,
        "status_code": status_code,
        "latency_ms": 100,
        "is_error": status_code is None or status_code >= 500,
    }
    fields.update(overrides)
    return OutcomeRecord(**fields)


@pytest.fixture
def add_records(outcome_store):
    """Write records through the sink: add_records((created_at, status_code, {overrides}), ...)."""
    def _add(*entries):
        for entry in entries:
            created_at, status_code, *rest = entry
            overrides = rest[0] if rest else {}
            outcome_store.write(make_record(created_at, status_code, **overrides))
    return _add
