"""
Service Registry

Process-wide wiring of the report core. main.py builds it once the database is
initialized; routers and scheduler jobs look it up through get_services().
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.orm import sessionmaker

from gateway_reports.services.aggregate_store import AggregateStore
from gateway_reports.services.aggregation_worker import AggregationWorker
from gateway_reports.services.node_health import NodeHealthStore
from gateway_reports.services.outcome_store import OutcomeStore
from gateway_reports.services.overview_cache import OverviewCache
from gateway_reports.services.overview_queries import OverviewQueries
from gateway_reports.services.report_cache import ReportCache
from gateway_reports.services.report_repository import ReportRepository

logger = structlog.get_logger(__name__)


@dataclass
class ReportServices:
    outcome_store: OutcomeStore
    aggregate_store: AggregateStore
    node_health: NodeHealthStore
    repository: ReportRepository
    report_cache: ReportCache
    overview_cache: OverviewCache
    worker: AggregationWorker

    def cache_stats(self) -> dict:
        return {
            "report": {"entries": len(self.report_cache.cache), **self.report_cache.cache.stats.to_dict()},
            "overview": {"entries": len(self.overview_cache.cache), **self.overview_cache.cache.stats.to_dict()},
        }


def build_services(session_factory: sessionmaker, node_health: Optional[NodeHealthStore] = None) -> ReportServices:
    """
    Wire stores, caches and the aggregation worker around one session factory.

    The worker invalidates both caches whenever a bucket's aggregates change.
    """
    outcome_store = OutcomeStore(session_factory)
    aggregate_store = AggregateStore(session_factory)
    node_health = node_health or NodeHealthStore()

    repository = ReportRepository(outcome_store, aggregate_store)
    report_cache = ReportCache(repository)
    overview_cache = OverviewCache(OverviewQueries(outcome_store, node_health))

    worker = AggregationWorker(outcome_store, aggregate_store)
    worker.register_cache(report_cache)
    worker.register_cache(overview_cache)

    return ReportServices(
        outcome_store=outcome_store,
        aggregate_store=aggregate_store,
        node_health=node_health,
        repository=repository,
        report_cache=report_cache,
        overview_cache=overview_cache,
        worker=worker,
    )


_services: Optional[ReportServices] = None


def init_services(session_factory: Optional[sessionmaker]) -> Optional[ReportServices]:
    """Build the registry; stays empty when the database is not configured."""
    global _services
    if session_factory is None:
        logger.warning("report_services_disabled", reason="database_not_configured")
        _services = None
        return None

    _services = build_services(session_factory)
    logger.info("report_services_initialized")
    return _services


def set_services(services: Optional[ReportServices]) -> None:
    global _services
    _services = services


def get_services() -> Optional[ReportServices]:
    """FastAPI dependency; None means the database is not configured."""
    return _services


__all__ = [
    "ReportServices",
    "build_services",
    "init_services",
    "set_services",
    "get_services",
]
