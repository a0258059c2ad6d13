"""
Structured logging configuration

JSON log lines on stdout with request, user and order context attached, so a
single order can be traced across placement, payment callbacks and status
changes.
"""

import logging
import logging.handlers
import os
import sys
import json
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar
import uuid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
order_id_var: ContextVar[Optional[str]] = ContextVar('order_id', default=None)

# Probes hit every few seconds; they are not worth an access log line
QUIET_PATHS = ("/health", "/metrics")
REDACTED = "***REDACTED***"


class StructuredFormatter(logging.Formatter):
    """JSON formatter understood by ELK, CloudWatch Insights and Datadog."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "@timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": os.getenv('SERVICE_NAME', 'unknown-service'),
            "environment": os.getenv('ENVIRONMENT', 'development'),
            "version": os.getenv('SERVICE_VERSION', '1.0.0'),
        }

        trace = current_context()
        if trace:
            log_obj["trace"] = trace

        log_obj["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info)
            }

        custom = getattr(record, 'extra_fields', None)
        if custom:
            log_obj["custom"] = custom

        return json.dumps(log_obj, default=str)


def current_context() -> Optional[Dict[str, str]]:
    context = {
        "request_id": request_id_var.get(),
        "user_id": user_id_var.get(),
        "order_id": order_id_var.get(),
    }
    context = {k: v for k, v in context.items() if v}
    return context or None


class SecurityFilter(logging.Filter):
    """Redact credentials in messages and in structured extras.

    Webhook signatures, gateway secrets and bearer tokens pass through the
    payment and auth code paths; none of them may reach a log sink.
    """

    SENSITIVE_FIELDS = (
        'password', 'token', 'secret', 'signature', 'authorization',
        'api_key', 'key_secret', 'x-client-secret', 'cookie',
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            lowered = record.msg.lower()
            for field in self.SENSITIVE_FIELDS:
                index = lowered.find(f"{field}=")
                if index < 0:
                    index = lowered.find(f"{field}:")
                if index >= 0:
                    record.msg = record.msg[:index] + f"{field}={REDACTED}"
                    record.args = ()
                    break

        custom = getattr(record, 'extra_fields', None)
        if isinstance(custom, dict):
            record.extra_fields = self._scrub(custom)
        return True

    def _scrub(self, data: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {}
        for key, value in data.items():
            if any(field in str(key).lower() for field in self.SENSITIVE_FIELDS):
                cleaned[key] = REDACTED
            elif isinstance(value, dict):
                cleaned[key] = self._scrub(value)
            else:
                cleaned[key] = value
        return cleaned


def setup_logging(
    service_name: str,
    level: str = "INFO",
    enable_console: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Setup structured logging for the service

    Args:
        service_name: Name reported in every log line
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Log to stdout
        log_file: Optional path of a rotating log file
    """
    os.environ['SERVICE_NAME'] = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = []

    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5))
    for handler in handlers:
        handler.setFormatter(StructuredFormatter())
        handler.addFilter(SecurityFilter())
        root_logger.addHandler(handler)

    # Third-party chatter; httpx would otherwise log every provider URL
    for noisy in ('uvicorn.access', 'httpx', 'httpcore', 'sqlalchemy.engine', 'alembic'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={'extra_fields': {'service': service_name, 'level': level, 'file': log_file}}
    )


class LoggerAdapter(logging.LoggerAdapter):
    """Merges the adapter's bound fields into each record's ``extra_fields``.

    Request, user and order ids are read from context variables by the
    formatter, so call sites only pass what is specific to the event.
    """

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        fields = dict(self.extra)
        fields.update(extra.get('extra_fields') or {})
        if fields:
            extra['extra_fields'] = fields
        kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str, **bound: Any) -> LoggerAdapter:
    """``get_logger(__name__, component="payments")`` tags every line with ``component``."""
    return LoggerAdapter(logging.getLogger(name), bound)


def set_request_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None
) -> None:
    if request_id:
        request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)


def set_order_context(order_id: Any) -> None:
    """Tag subsequent log lines of this request with the order being worked on"""
    if order_id is not None:
        order_id_var.set(str(order_id))


def generate_request_id() -> str:
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One access line per request with status and duration.
    Propagates or mints ``X-Request-ID``.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        request_id_var.set(request_id)
        user_id_var.set(None)
        order_id_var.set(None)

        logger = get_logger(__name__)
        path = request.url.path
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"Request failed: {request.method} {path}",
                exc_info=True,
                extra={'extra_fields': {'method': request.method, 'path': path, 'duration_ms': _elapsed_ms(start_time)}}
            )
            raise

        if not path.startswith(QUIET_PATHS):
            logger.info(
                f"{request.method} {path} -> {response.status_code}",
                extra={'extra_fields': {
                    'method': request.method,
                    'path': path,
                    'status_code': response.status_code,
                    'duration_ms': _elapsed_ms(start_time),
                    'client_host': request.client.host if request.client else None,
                }}
            )
        response.headers['X-Request-ID'] = request_id
        return response


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)
