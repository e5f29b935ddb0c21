"""
Cache Module
Single-flight TTL cache shared by the report and overview caches
"""

from gateway_reports.services.cache.single_flight import (
    SingleFlightCache,
    CacheStats,
    EvictionEvent,
    EvictionReason,
    ranges_overlap,
)

__all__ = [
    "SingleFlightCache",
    "CacheStats",
    "EvictionEvent",
    "EvictionReason",
    "ranges_overlap",
]
