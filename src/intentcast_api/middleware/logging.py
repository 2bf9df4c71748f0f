"""Structured request logging with correlation IDs.

- Accepts ``X-Request-ID`` for distributed tracing or generates one
- Logs request start and completion with timing, flags slow requests
- Never logs signatures, nonces or key-like query parameters
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Context variable for request correlation ID
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

logger = logging.getLogger("intentcast.api")

# Query parameters that should be masked
SENSITIVE_PARAMS = frozenset({
    "signature",
    "sig",
    "key",
    "private_key",
    "token",
    "secret",
})


@dataclass
class LoggingConfig:
    """Configuration for structured logging middleware."""

    exclude_paths: List[str] = field(default_factory=lambda: ["/", "/health"])

    # Slow request threshold (ms) - logs warning if exceeded
    slow_request_threshold_ms: float = 1000.0


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = request_id_var.get() or "-"
        return True


def filter_query_params(query_string: str) -> str:
    """Mask sensitive query parameters."""
    if not query_string:
        return ""

    params = []
    for param in query_string.split("&"):
        if "=" in param:
            key, _ = param.split("=", 1)
            if key.lower() in SENSITIVE_PARAMS:
                params.append(f"{key}=***")
                continue
        params.append(param)
    return "&".join(params)


def get_client_ip(request: Request) -> str:
    """Client IP, honouring reverse-proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a correlation ID to each request and logs it with timing."""

    def __init__(self, app, config: LoggingConfig | None = None):
        super().__init__(app)
        self.config = config or LoggingConfig()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
        request_id_var.set(correlation_id)
        request.state.request_id = correlation_id

        method = request.method
        path = request.url.path
        quiet = path in self.config.exclude_paths

        if not quiet:
            request_context = {
                "event": "request_start",
                "method": method,
                "path": path,
                "query": filter_query_params(request.url.query) or None,
                "client_ip": get_client_ip(request),
            }
            logger.info(
                "Request started",
                extra={k: v for k, v in request_context.items() if v is not None},
            )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "Request failed",
                extra={
                    "event": "request_error",
                    "method": method,
                    "path": path,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": round(duration_ms, 2),
                },
                exc_info=True,
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if not quiet:
            response_context = {
                "event": "request_complete",
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
            if response.status_code >= 500:
                logger.error("Request completed with server error", extra=response_context)
            elif response.status_code >= 400:
                logger.warning("Request completed with client error", extra=response_context)
            elif duration_ms > self.config.slow_request_threshold_ms:
                response_context["slow_request"] = True
                logger.warning("Slow request completed", extra=response_context)
            else:
                logger.info("Request completed", extra=response_context)

        response.headers["X-Request-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    EXTRA_FIELDS = (
        "event",
        "method",
        "path",
        "status_code",
        "duration_ms",
        "client_ip",
        "error",
        "error_type",
        "error_code",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        for name in self.EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        json_format: Use JSON format (for production) or human-readable (for dev)
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level.upper()))
    console_handler.addFilter(CorrelationIdFilter())

    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"
            )
        )

    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_correlation_id() -> Optional[str]:
    return request_id_var.get()
