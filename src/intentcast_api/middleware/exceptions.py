"""Global exception handlers for the IntentCast API.

Every error is rendered as RFC 7807 Problem Details:
{
    "type": "https://intentcast.dev/errors/<error-type>",
    "title": "Human-readable error title",
    "status": 409,
    "detail": "Intent is matched",
    "instance": "/api/v1/intents/int_1a2b3c4d/accept",
    "request_id": "req_abc123",
    "timestamp": "...",
    "error_code": "CONFLICT",
    ... exception details
}
"""
from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from intentcast_core.exceptions import (
    AUTH_HEADERS,
    AuthenticationError,
    DependencyNotConfiguredError,
    IntentCastException,
    PaymentError,
    RateLimitError,
    UpstreamError,
)

logger = logging.getLogger("intentcast.api")

ERROR_TYPE_BASE = "https://intentcast.dev/errors"


@dataclass
class RFC7807Error:
    """RFC 7807 Problem Details representation."""
    type: str
    title: str
    status: int
    detail: str
    instance: str
    request_id: str
    error_code: str
    extensions: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "type": self.type,
            "title": self.title,
            "status": self.status,
            "detail": self.detail,
            "instance": self.instance,
            "request_id": self.request_id,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "error_code": self.error_code,
        }
        if self.extensions:
            for key, value in self.extensions.items():
                result.setdefault(key, value)
        return result


# Error type mappings for consistent error URIs
ERROR_TYPES = {
    "VALIDATION_ERROR": ("validation-error", "Validation Error"),
    "NOT_FOUND": ("not-found", "Resource Not Found"),
    "CONFLICT": ("conflict", "Resource Conflict"),
    "AUTHENTICATION_ERROR": ("authentication-required", "Authentication Required"),
    "MISSING_CREDENTIALS": ("missing-credentials", "Missing Credentials"),
    "INVALID_SIGNATURE": ("invalid-signature", "Invalid Signature"),
    "NONCE_ALREADY_USED": ("nonce-already-used", "Nonce Already Used"),
    "AUTHORIZATION_ERROR": ("forbidden", "Access Denied"),
    "PAYMENT_ERROR": ("payment-error", "Payment Error"),
    "INSUFFICIENT_BALANCE": ("insufficient-balance", "Insufficient Balance"),
    "TRANSACTION_FAILED": ("transaction-failed", "Transaction Failed"),
    "UPSTREAM_ERROR": ("upstream-error", "Upstream Service Error"),
    "LEDGER_ERROR": ("ledger-error", "Ledger Error"),
    "RPC_ERROR": ("rpc-error", "Ledger RPC Error"),
    "FULFILLMENT_FAILED": ("fulfillment-failed", "Fulfillment Failed"),
    "RATE_LIMIT_EXCEEDED": ("rate-limit-exceeded", "Rate Limit Exceeded"),
    "SERVICE_UNAVAILABLE": ("service-unavailable", "Service Unavailable"),
    "INTERNAL_ERROR": ("internal-error", "Internal Server Error"),
    "BAD_REQUEST": ("bad-request", "Bad Request"),
    "METHOD_NOT_ALLOWED": ("method-not-allowed", "Method Not Allowed"),
}

STATUS_TO_CODE = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_ERROR",
    403: "AUTHORIZATION_ERROR",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMIT_EXCEEDED",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def get_request_id(request: Request) -> str:
    """Extract request ID from request state or headers."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID", "unknown")


def is_production(request: Request) -> bool:
    """Only dev and test environments show internal error details."""
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.is_production)


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    request_id: str,
    details: dict | None = None,
    instance: str = "",
    headers: dict | None = None,
) -> JSONResponse:
    """Create an RFC 7807 compliant error response."""
    type_info = ERROR_TYPES.get(
        error_code,
        (error_code.lower().replace("_", "-"), error_code.replace("_", " ").title()),
    )
    error = RFC7807Error(
        type=f"{ERROR_TYPE_BASE}/{type_info[0]}",
        title=type_info[1],
        status=status_code,
        detail=message,
        instance=instance,
        request_id=request_id,
        error_code=error_code,
        extensions=details,
    )
    response_headers = {"X-Request-ID": request_id}
    if headers:
        response_headers.update(headers)
    return JSONResponse(
        status_code=status_code,
        content=error.to_dict(),
        headers=response_headers,
        media_type="application/problem+json",
    )


def format_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Flatten pydantic errors to ``{field, message, type}`` entries."""
    formatted = []
    for error in errors:
        # Drop the body marker and the union tag from the location.
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "legacy", "explicit")]
        formatted.append({
            "field": ".".join(loc) or "body",
            "message": error.get("msg", ""),
            "type": error.get("type", ""),
        })
    return formatted


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = get_request_id(request)
        errors = format_validation_errors(exc.errors())
        logger.warning(
            "Validation error: %d field(s) failed",
            len(errors),
            extra={"path": request.url.path},
        )
        return create_error_response(
            error_code="VALIDATION_ERROR",
            message="One or more fields failed validation",
            status_code=422,
            request_id=request_id,
            details={"errors": errors},
            instance=request.url.path,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        request_id = get_request_id(request)
        error_code = STATUS_TO_CODE.get(exc.status_code, "INTERNAL_ERROR")
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("HTTP error %s: %s", exc.status_code, exc.detail, extra={"path": request.url.path})
        return create_error_response(
            error_code=error_code,
            message=str(exc.detail) if exc.detail else "An error occurred",
            status_code=exc.status_code,
            request_id=request_id,
            instance=request.url.path,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(IntentCastException)
    async def intentcast_exception_handler(request: Request, exc: IntentCastException) -> JSONResponse:
        request_id = get_request_id(request)

        if exc.http_status >= 500:
            logger.error(
                "Server error: %s - %s",
                exc.error_code,
                exc.message,
                extra={"error_code": exc.error_code},
            )
        else:
            logger.warning(
                "Client error: %s - %s",
                exc.error_code,
                exc.message,
                extra={"error_code": exc.error_code},
            )

        headers = None
        if isinstance(exc, AuthenticationError):
            headers = {
                "WWW-Authenticate": f'Signature realm="IntentCast", headers="{" ".join(AUTH_HEADERS)}"',
            }
        elif isinstance(exc, RateLimitError):
            headers = {"Retry-After": str(exc.details.get("retry_after_seconds", 60))}

        if isinstance(exc, DependencyNotConfiguredError) and is_production(request):
            return create_error_response(
                error_code="SERVICE_UNAVAILABLE",
                message="Service temporarily unavailable",
                status_code=503,
                request_id=request_id,
                instance=request.url.path,
            )

        # Upstream and payment failures carry caller-actionable reasons.
        public = exc.http_status < 500 or isinstance(exc, (UpstreamError, PaymentError))
        details = exc.details if public or not is_production(request) else None
        return create_error_response(
            error_code=exc.error_code,
            message=exc.message,
            status_code=exc.http_status,
            request_id=request_id,
            details=details,
            instance=request.url.path,
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = get_request_id(request)
        logger.error(
            "Unhandled exception: %s: %s",
            type(exc).__name__,
            exc,
            extra={"path": request.url.path, "method": request.method},
            exc_info=True,
        )

        if is_production(request):
            message = "An internal error occurred"
            details = None
        else:
            message = f"{type(exc).__name__}: {exc}"
            details = {
                "exception_type": type(exc).__name__,
                "traceback": traceback.format_exc().split("\n")[-10:],
            }

        return create_error_response(
            error_code="INTERNAL_ERROR",
            message=message,
            status_code=500,
            request_id=request_id,
            details=details,
            instance=request.url.path,
        )
