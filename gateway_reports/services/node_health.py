"""
Node Health Store

In-memory snapshot of downstream node health. The active health poller
publishes into it; the overview only reads counts.
"""

import threading
from typing import Dict, Iterable, List, Tuple

from gateway_reports.models.overview import NodeHealth


class NodeHealthStore:
    """Thread-safe latest-health-per-node map."""

    def __init__(self):
        self._lock = threading.Lock()
        self._nodes: Dict[str, NodeHealth] = {}

    def update(self, health: NodeHealth) -> None:
        with self._lock:
            self._nodes[health.node] = health

    def update_many(self, healths: Iterable[NodeHealth]) -> None:
        with self._lock:
            for health in healths:
                self._nodes[health.node] = health

    def all(self) -> List[NodeHealth]:
        with self._lock:
            return list(self._nodes.values())

    def counts(self) -> Tuple[int, int]:
        """
        Returns:
            (total_nodes, nodes_down)
        """
        nodes = self.all()
        return len(nodes), sum(1 for node in nodes if not node.is_healthy)


__all__ = ["NodeHealthStore"]
