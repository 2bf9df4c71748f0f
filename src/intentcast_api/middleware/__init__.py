"""API middleware: logging, rate limiting, error handling, wallet auth."""

from .auth import caller_wallet, require_wallet
from .exceptions import register_exception_handlers
from .logging import (
    CorrelationIdFilter,
    JSONFormatter,
    StructuredLoggingMiddleware,
    get_correlation_id,
    setup_logging,
)
from .rate_limit import InMemoryRateLimiter, RateLimitConfig, RateLimitMiddleware

__all__ = [
    "caller_wallet",
    "require_wallet",
    "register_exception_handlers",
    "CorrelationIdFilter",
    "JSONFormatter",
    "StructuredLoggingMiddleware",
    "get_correlation_id",
    "setup_logging",
    "InMemoryRateLimiter",
    "RateLimitConfig",
    "RateLimitMiddleware",
]
