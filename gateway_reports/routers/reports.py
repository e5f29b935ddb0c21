"""
Report API Router
Cached time-series reports, dashboard overview and explicit cache invalidation
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from gateway_reports.config import settings
from gateway_reports.models.api_schemas import InvalidateRequest
from gateway_reports.models.report import Granularity, ReportFilter
from gateway_reports.services.errors import AggregatesUnavailableError, InvalidReportRangeError
from gateway_reports.services.registry import ReportServices, get_services
from gateway_reports.time_utils import to_utc_naive, utc_now

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


def _require(services: Optional[ReportServices]) -> ReportServices:
    if services is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return services


@router.get("")
async def get_report(
    start: datetime = Query(..., description="Window start (ISO 8601; naive means UTC)"),
    end: datetime = Query(..., description="Window end (ISO 8601; naive means UTC)"),
    granularity: Granularity = Query(Granularity.day, description="Bucket width"),
    path: Optional[str] = Query(None, description="Only requests to this path"),
    downstream_host: Optional[str] = Query(None, description="Only requests proxied to this host"),
    client_ip: Optional[str] = Query(None, description="Only requests from this client"),
    services: Optional[ReportServices] = Depends(get_services)
):
    """
    Request counts per outcome category and time bucket

    Served from the report cache; unfiltered historical windows are summed
    from aggregates, everything else is scanned from raw records.

    Raises:
        422: end <= start
        503: Database not configured
        504: Report did not finish within report_query_timeout_seconds
    """
    services = _require(services)
    report_filter = ReportFilter(path=path, downstream_host=downstream_host, client_ip=client_ip)

    try:
        report = await services.report_cache.get(
            start,
            end,
            granularity,
            report_filter,
            timeout=settings.report_query_timeout_seconds,
        )
    except (InvalidReportRangeError, AggregatesUnavailableError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except asyncio.TimeoutError:
        logger.warning("report_timeout", granularity=granularity.value, filter=report_filter.normalized_key())
        raise HTTPException(status_code=504, detail="Report query timed out")

    return report.to_dict()


@router.get("/overview")
async def get_overview(
    start: Optional[datetime] = Query(None, description="Window start (defaults to end - 1 hour)"),
    end: Optional[datetime] = Query(None, description="Window end (defaults to now)"),
    services: Optional[ReportServices] = Depends(get_services)
):
    """
    Dashboard overview: totals, timelines, status distribution and node health

    The window is normalized before lookup, so repeated "last hour" polls
    share one cache entry.

    Raises:
        422: end <= start
        503: Database not configured
        504: Overview did not finish within report_query_timeout_seconds
    """
    services = _require(services)
    end = to_utc_naive(end) if end else utc_now()
    start = to_utc_naive(start) if start else end - timedelta(hours=1)

    try:
        overview = await services.overview_cache.get(
            start,
            end,
            timeout=settings.report_query_timeout_seconds,
        )
    except InvalidReportRangeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except asyncio.TimeoutError:
        logger.warning("overview_timeout", start=start.isoformat(), end=end.isoformat())
        raise HTTPException(status_code=504, detail="Overview query timed out")

    return overview.to_dict()


@router.post("/invalidate")
async def invalidate_reports(
    request: InvalidateRequest,
    services: Optional[ReportServices] = Depends(get_services)
):
    """
    Drop cached reports and overviews whose window overlaps [start, end)

    Returns:
        dict with the number of entries removed per cache
    """
    services = _require(services)
    start = to_utc_naive(request.start)
    end = to_utc_naive(request.end)
    if end <= start:
        raise HTTPException(status_code=422, detail="end must be after start")

    removed_reports = services.report_cache.invalidate(start, end)
    removed_overviews = services.overview_cache.invalidate(start, end)

    return {
        "status": "invalidated",
        "removed": {
            "reports": removed_reports,
            "overviews": removed_overviews,
        }
    }
