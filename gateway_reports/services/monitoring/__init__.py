"""
Monitoring Module
Structured JSON logging with correlation IDs
"""

from gateway_reports.services.monitoring.logging import setup_logging, CorrelationJsonFormatter

__all__ = [
    "setup_logging",
    "CorrelationJsonFormatter",
]
