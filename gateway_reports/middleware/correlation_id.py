"""
Correlation ID Middleware
Tags every request with a correlation ID so report and cache log lines can be joined
"""

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id"]


def get_correlation_id() -> str:
    """
    Get current correlation ID from async context.

    Read by CorrelationJsonFormatter for every stdlib log record. Report
    computations offloaded with asyncio.to_thread inherit the request's
    context, so their log lines keep the ID. Scheduler jobs run outside any
    request and see 'none'.

    Returns:
        str: The correlation ID or 'none' if not available
    """
    return correlation_id.get() or 'none'
