"""
Outcome API Router
Write sink for request outcomes, paged reads, and node health publishing
"""

import asyncio
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from gateway_reports.models.api_schemas import NodeHealthBatch, OutcomeRecordIn
from gateway_reports.models.outcome_record import OutcomeRecord
from gateway_reports.models.overview import NodeHealth
from gateway_reports.models.report import ReportFilter
from gateway_reports.services.registry import ReportServices, get_services
from gateway_reports.time_utils import to_utc_naive, utc_now

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["outcomes"])


@router.post("/outcomes", status_code=201)
async def write_outcome(
    payload: OutcomeRecordIn,
    services: Optional[ReportServices] = Depends(get_services)
):
    """
    Store one request outcome

    Records are immutable once written; reports pick them up on the raw path
    immediately and on the aggregate path after the next sweep.
    """
    if services is None:
        raise HTTPException(status_code=503, detail="Database not configured")

    fields = payload.model_dump()
    created_at = fields.pop("created_at")
    record = OutcomeRecord(
        created_at=to_utc_naive(created_at) if created_at else utc_now(),
        **fields
    )
    record_id = await asyncio.to_thread(services.outcome_store.write, record)

    return {"status": "stored", "id": record_id}


@router.get("/outcomes")
async def list_outcomes(
    page: int = Query(1, ge=1, description="1-based page number"),
    page_size: int = Query(50, ge=1, le=500, description="Records per page"),
    start: Optional[datetime] = Query(None, description="Only records at or after this time"),
    end: Optional[datetime] = Query(None, description="Only records at or before this time"),
    path: Optional[str] = Query(None),
    downstream_host: Optional[str] = Query(None),
    client_ip: Optional[str] = Query(None),
    services: Optional[ReportServices] = Depends(get_services)
):
    """
    Paged outcome records, newest first

    Returns:
        dict with total count, page info and the records on this page
    """
    if services is None:
        raise HTTPException(status_code=503, detail="Database not configured")

    result = await asyncio.to_thread(
        services.outcome_store.page,
        ReportFilter(path=path, downstream_host=downstream_host, client_ip=client_ip),
        page,
        page_size,
        to_utc_naive(start) if start else None,
        to_utc_naive(end) if end else None,
    )

    return {
        "total": result.total_count,
        "total_pages": result.total_pages,
        "page": result.page,
        "page_size": result.page_size,
        "records": [
            {
                "id": record.id,
                "created_at": record.created_at.isoformat(),
                "trace_id": record.trace_id,
                "method": record.method,
                "path": record.path,
                "client_ip": record.client_ip,
                "downstream_host": record.downstream_host,
                "downstream_port": record.downstream_port,
                "status_code": record.status_code,
                "latency_ms": record.latency_ms,
                "is_error": record.is_error,
                "error_message": record.error_message,
            }
            for record in result.records
        ]
    }


@router.put("/nodes/health")
async def publish_node_health(
    batch: NodeHealthBatch,
    services: Optional[ReportServices] = Depends(get_services)
):
    """
    Replace the health snapshot for the given downstream nodes

    Published by the active health poller; the overview reads node counts from it.
    """
    if services is None:
        raise HTTPException(status_code=503, detail="Database not configured")

    now = utc_now()
    services.node_health.update_many(
        NodeHealth(
            host=node.host,
            port=node.port,
            is_healthy=node.is_healthy,
            last_checked=to_utc_naive(node.last_checked) if node.last_checked else now,
            status_message=node.status_message or "",
        )
        for node in batch.nodes
    )
    total, down = services.node_health.counts()
    logger.info("node_health_published", nodes=len(batch.nodes), total_nodes=total, nodes_down=down)

    return {"status": "updated", "total_nodes": total, "nodes_down": down}
