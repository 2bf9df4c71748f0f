"""Unified exception hierarchy for IntentCast.

All IntentCast-specific exceptions inherit from IntentCastException, enabling:
- Consistent error handling across packages
- HTTP status code mapping in the API layer
- Structured error responses with stable error codes

Usage:
    from intentcast_core.exceptions import ConflictError, NotFoundError

    if intent.status != IntentStatus.ACTIVE:
        raise ConflictError(
            f"Intent is {intent.status.value}",
            current_state=intent.status.value,
        )

All exceptions have:
- error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
- http_status: Appropriate HTTP status code for API responses
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format
"""
from __future__ import annotations

from typing import Any, Optional

# Canonical signed-message template, repeated in every authentication error.
AUTH_MESSAGE_FORMAT = "{app}:{nonce}:{method}:{path}"
AUTH_HEADERS = ["x-wallet-address", "x-signature", "x-nonce"]


class IntentCastException(Exception):
    """Base exception for all IntentCast errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
        details: Optional additional context
    """

    error_code: str = "INTENTCAST_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Validation & Input Errors (4xx)
# =============================================================================

class ValidationError(IntentCastException):
    """Invalid input data or parameters."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        errors: Optional[list[dict[str, Any]]] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(message, details=details)


class NotFoundError(IntentCastException):
    """Requested resource not found."""

    error_code = "NOT_FOUND"
    http_status = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} '{resource_id}' not found"
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = resource_id
        super().__init__(message, details=details)


class ConflictError(IntentCastException):
    """Illegal state transition or duplicate (e.g. accepting on a matched intent)."""

    error_code = "CONFLICT"
    http_status = 409

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if current_state:
            details["current_state"] = current_state
        super().__init__(message, details=details)


# =============================================================================
# Authentication & Authorization
# =============================================================================

class AuthenticationError(IntentCastException):
    """Wallet-signature authentication failed."""

    error_code = "AUTHENTICATION_ERROR"
    http_status = 401

    def __init__(
        self,
        message: str,
        message_to_sign: Optional[str] = None,
        message_format: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["message_format"] = message_format or AUTH_MESSAGE_FORMAT
        details["required_headers"] = AUTH_HEADERS
        if message_to_sign:
            details["message_to_sign"] = message_to_sign
        super().__init__(message, details=details)


class MissingCredentialsError(AuthenticationError):
    """One or more of the wallet authentication headers is absent."""

    error_code = "MISSING_CREDENTIALS"


class InvalidSignatureError(AuthenticationError):
    """Recovered signer does not match the claimed wallet."""

    error_code = "INVALID_SIGNATURE"


class NonceReusedError(AuthenticationError):
    """The (wallet, nonce) pair was already consumed."""

    error_code = "NONCE_ALREADY_USED"


class AuthorizationError(IntentCastException):
    """Authenticated wallet is not allowed to perform the operation."""

    error_code = "AUTHORIZATION_ERROR"
    http_status = 403


# =============================================================================
# Payment & Transaction Errors
# =============================================================================

class PaymentError(IntentCastException):
    """Base class for payment-related errors."""

    error_code = "PAYMENT_ERROR"
    http_status = 400


class InsufficientBalanceError(PaymentError):
    """Insufficient balance for transfer."""

    error_code = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        message: str,
        available: Optional[str] = None,
        required: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if available is not None:
            details["available"] = available
        if required is not None:
            details["required"] = required
        super().__init__(message, details=details)


class TransactionFailedError(PaymentError):
    """On-chain transaction failed."""

    error_code = "TRANSACTION_FAILED"
    http_status = 502

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if tx_hash:
            details["tx_hash"] = tx_hash
        if reason:
            details["reason"] = reason
        super().__init__(message, details=details)


# =============================================================================
# Upstream & Infrastructure Errors (5xx)
# =============================================================================

class UpstreamError(IntentCastException):
    """A ledger node or provider endpoint failed."""

    error_code = "UPSTREAM_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if service:
            details["service"] = service
        if status is not None:
            details["status"] = status
        super().__init__(message, details=details)


class LedgerError(UpstreamError):
    """Ledger client failure (balance query, transfer submission, receipt lookup)."""

    error_code = "LEDGER_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, service="ledger", details=details)


class FulfillmentFailedError(UpstreamError):
    """The provider's paid endpoint did not deliver; the intent stays matched."""

    error_code = "FULFILLMENT_FAILED"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, service="provider", status=status, details=details)


class RPCError(UpstreamError):
    """JSON-RPC call to the ledger node failed."""

    error_code = "RPC_ERROR"

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if method:
            details["method"] = method
        if code is not None:
            details["rpc_code"] = code
        self.code = code
        super().__init__(message, service="ledger", details=details)


class ConfigurationError(IntentCastException):
    """Service configuration error."""

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


class DependencyNotConfiguredError(ConfigurationError):
    """Required dependency not configured."""

    error_code = "DEPENDENCY_NOT_CONFIGURED"
    http_status = 503

    def __init__(
        self,
        dependency: str,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = message or f"Required dependency '{dependency}' is not configured"
        details = details or {}
        details["dependency"] = dependency
        super().__init__(message, details=details)


class RateLimitError(IntentCastException):
    """Rate limit exceeded."""

    error_code = "RATE_LIMIT_EXCEEDED"
    http_status = 429

    def __init__(
        self,
        message: str = "Too many requests",
        retry_after: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(message, details=details)


__all__ = [
    "AUTH_MESSAGE_FORMAT",
    "IntentCastException",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AuthenticationError",
    "MissingCredentialsError",
    "InvalidSignatureError",
    "NonceReusedError",
    "AuthorizationError",
    "PaymentError",
    "InsufficientBalanceError",
    "TransactionFailedError",
    "UpstreamError",
    "LedgerError",
    "FulfillmentFailedError",
    "RPCError",
    "ConfigurationError",
    "DependencyNotConfiguredError",
    "RateLimitError",
]
