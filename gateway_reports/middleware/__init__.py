"""
Middleware Module
ASGI middleware for request processing
"""

from gateway_reports.middleware.correlation_id import CorrelationIdMiddleware, get_correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id"]
