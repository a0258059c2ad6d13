"""Shared core utilities for the services.

JSON logging with request/user/order context, and health probes.
"""

from .health import ServiceHealth, HealthStatus
from .logging_config import (
    setup_logging,
    get_logger,
    RequestLoggingMiddleware,
    set_request_context,
    set_order_context,
    generate_request_id,
    LoggerAdapter,
)

__all__ = [
    # Health checks
    "ServiceHealth",
    "HealthStatus",
    # Logging
    "setup_logging",
    "get_logger",
    "RequestLoggingMiddleware",
    "set_request_context",
    "set_order_context",
    "generate_request_id",
    "LoggerAdapter",
]
