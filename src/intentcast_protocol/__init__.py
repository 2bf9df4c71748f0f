"""Wallet authentication and x402 payment protocol for IntentCast."""

from .auth import AuthContext, NonceRegistry, WalletAuthenticator, build_auth_message, sign_auth_message
from .client import FulfillmentResult, X402PaymentClient, normalize_private_key
from .fulfillment import FulfillmentFlow, FulfillmentOutcome, provider_fulfill_url
from .replay import ReplayCache
from .settlement import OnChainSettler, SimulatedSettler, X402Settlement, X402SettlementStatus, X402Settler
from .verifier import PaymentVerifier, VerificationResult
from .x402 import (
    PaymentPayload,
    PaymentRequired,
    PaymentRequirements,
    SettlementResponse,
    X402HeaderBuilder,
)

__all__ = [
    "AuthContext",
    "NonceRegistry",
    "WalletAuthenticator",
    "build_auth_message",
    "sign_auth_message",
    "FulfillmentResult",
    "X402PaymentClient",
    "normalize_private_key",
    "FulfillmentFlow",
    "FulfillmentOutcome",
    "provider_fulfill_url",
    "ReplayCache",
    "OnChainSettler",
    "SimulatedSettler",
    "X402Settlement",
    "X402SettlementStatus",
    "X402Settler",
    "PaymentVerifier",
    "VerificationResult",
    "PaymentPayload",
    "PaymentRequired",
    "PaymentRequirements",
    "SettlementResponse",
    "X402HeaderBuilder",
]
