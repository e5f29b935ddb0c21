"""
Structured JSON Logging with Correlation ID
JSON formatter for the stdlib root logger; every entry carries the request's correlation ID
"""

import logging
import sys
import os
from pythonjsonlogger import jsonlogger

from gateway_reports.middleware.correlation_id import get_correlation_id

SERVICE_NAME = 'gateway-request-reports'


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic correlation ID injection.

    Report, overview and cache log lines emitted while serving a request carry
    the ID that CorrelationIdMiddleware assigned to it, so a slow report can be
    traced from the HTTP access log down to the cache miss that computed it.
    Scheduler jobs (aggregation sweeps, cache maintenance) run outside any
    request and log 'none'.
    """

    def add_fields(self, log_record, record, message_dict):
        """
        Add custom fields to log record.

        Called by JsonFormatter for each log entry. Adds:
        - correlation_id: From async context or 'none' outside a request
        - service: Service identifier for the shared log pipeline
        - environment: Deployment environment (development/testing/production)

        Args:
            log_record: Dictionary to be serialized to JSON
            record: Standard logging.LogRecord object
            message_dict: Additional fields from logger call
        """
        super().add_fields(log_record, record, message_dict)

        log_record['correlation_id'] = get_correlation_id()
        log_record['service'] = SERVICE_NAME
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


def setup_logging(level: int = logging.INFO):
    """
    Configure structured JSON logging to stdout on the root logger.

    Covers stdlib loggers (database, uvicorn, apscheduler); structlog events
    from the report services are rendered by the processors configured in
    main.py.

    Args:
        level: Root log level (INFO in production)

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    handler = logging.StreamHandler(sys.stdout)

    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    return handler
