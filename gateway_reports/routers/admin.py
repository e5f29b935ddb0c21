"""
Admin API Router
Manual aggregation trigger and aggregate freshness
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from gateway_reports.models.report import Granularity
from gateway_reports.services.registry import ReportServices, get_services
from gateway_reports.time_utils import utc_now

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/aggregation/trigger")
async def trigger_aggregation(services: Optional[ReportServices] = Depends(get_services)):
    """
    Manually trigger an aggregation sweep.

    For testing and operational purposes. Runs the sweep immediately
    instead of waiting for the next interval.

    Returns:
        dict: Sweep summary, or status "skipped" when a sweep is already running
    """
    if services is None:
        return {
            "status": "error",
            "message": "Database not configured"
        }

    try:
        result = await asyncio.to_thread(services.worker.run_sweep)
    except Exception as e:
        logger.error("manual_aggregation_error", error=str(e), exc_info=True)
        return {
            "status": "error",
            "message": str(e)
        }

    return {
        "status": result.get("status", "completed"),
        "result": result
    }


@router.get("/aggregation/status")
async def aggregation_status(
    granularity: Granularity = Query(Granularity.hour, description="Granularity to probe"),
    services: Optional[ReportServices] = Depends(get_services)
):
    """
    Aggregate freshness for one granularity's lookback window

    Returns:
        dict with the newest last_updated_at, whether a sweep is running and
        the summary of the previous sweep
    """
    if services is None:
        raise HTTPException(status_code=503, detail="Database not configured")

    worker = services.worker
    now = utc_now()
    last_updated = await asyncio.to_thread(
        services.aggregate_store.last_updated,
        worker.first_bucket(granularity, now),
        granularity.floor(now),
        granularity,
    )

    return {
        "granularity": granularity.value,
        "last_updated_at": last_updated.isoformat() if last_updated else None,
        "sweep_running": worker.is_running,
        "last_sweep": worker.last_summary,
    }
