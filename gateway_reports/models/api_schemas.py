"""
Pydantic schemas for the report API request bodies
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class OutcomeRecordIn(BaseModel):
    """
    One request outcome pushed by the gateway's logging sink
    """
    created_at: Optional[datetime] = Field(None, description="When the request completed (defaults to now, UTC)")
    trace_id: Optional[str] = Field(None, max_length=64)
    method: Optional[str] = Field(None, max_length=10)
    path: Optional[str] = Field(None, max_length=500)
    client_ip: Optional[str] = Field(None, max_length=64)
    downstream_host: Optional[str] = Field(None, max_length=255)
    downstream_port: Optional[int] = None
    status_code: Optional[int] = Field(None, description="Downstream status code; missing counts as 'other'")
    latency_ms: int = Field(0, ge=0)
    is_error: bool = False
    error_message: Optional[str] = None
    request_size: int = Field(0, ge=0)
    response_size: int = Field(0, ge=0)


class NodeHealthIn(BaseModel):
    """
    Health snapshot for one downstream node, published by the health poller
    """
    host: str
    port: int
    is_healthy: bool
    last_checked: Optional[datetime] = None
    status_message: Optional[str] = None


class NodeHealthBatch(BaseModel):
    nodes: List[NodeHealthIn]


class InvalidateRequest(BaseModel):
    """
    Window whose cached reports and overviews should be dropped
    """
    start: datetime
    end: datetime
