"""
Overview Value Types
Composite dashboard result built from concurrent sub-queries
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class NodeHealth:
    """Snapshot of one downstream node, as published by the health poller."""
    host: str
    port: int
    is_healthy: bool
    last_checked: datetime
    status_message: str = ""

    @property
    def node(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class TimelinePoint:
    timestamp: str
    value: int


@dataclass(frozen=True)
class StatusBucket:
    label: str  # "2xx", "4xx", ...
    count: int


@dataclass(frozen=True)
class OverviewTotals:
    total_requests: int
    error_requests: int
    total_latency_ms: int

    @property
    def error_rate(self) -> float:
        """Error percentage, 0.0 when there were no requests."""
        if not self.total_requests:
            return 0.0
        return self.error_requests / self.total_requests * 100

    @property
    def avg_latency_ms(self) -> int:
        if not self.total_requests:
            return 0
        return round(self.total_latency_ms / self.total_requests)


@dataclass(frozen=True)
class OverviewResult:
    """Dashboard overview for a normalized window."""
    window_start: datetime
    window_end: datetime
    total_nodes: int
    nodes_down: int
    total_requests: int
    error_requests: int
    error_rate: float
    avg_latency_ms: int
    request_timeline: Tuple[TimelinePoint, ...]
    latency_timeline: Tuple[TimelinePoint, ...]
    status_distribution: Tuple[StatusBucket, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "total_nodes": self.total_nodes,
            "nodes_down": self.nodes_down,
            "total_requests": self.total_requests,
            "error_requests": self.error_requests,
            "error_rate": self.error_rate,
            "avg_latency_ms": self.avg_latency_ms,
            "request_timeline": [{"timestamp": p.timestamp, "count": p.value} for p in self.request_timeline],
            "latency_timeline": [{"timestamp": p.timestamp, "latency_ms": p.value} for p in self.latency_timeline],
            "status_distribution": [{"label": b.label, "count": b.count} for b in self.status_distribution],
        }
