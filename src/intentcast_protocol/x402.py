"""x402 HTTP 402 Payment Required wire format.

Implements:
- Payment requirements (server -> client, 402 response body and header)
- Payment payloads for the ``exact`` EVM scheme (client -> server)
- Settlement receipts (server -> client, response header)
- base64-encoded JSON header transport for v1 (``X-PAYMENT``) and
  v2 (``PAYMENT-SIGNATURE``) clients

Reference: https://www.x402.org/
"""
from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Optional

# v2 header constants
X402_PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
X402_PAYMENT_SIGNATURE_HEADER = "PAYMENT-SIGNATURE"
X402_PAYMENT_RESPONSE_HEADER = "PAYMENT-RESPONSE"
# v1 header constants
X402_V1_PAYMENT_HEADER = "X-PAYMENT"
X402_V1_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

X402_VERSION_1 = 1
X402_VERSION_2 = 2
X402_SUPPORTED_VERSIONS = (X402_VERSION_1, X402_VERSION_2)

SCHEME_EXACT = "exact"
DEFAULT_NETWORK = "eip155:84532"
USDC_DECIMALS = 6

# CAIP-2 ids and the legacy network names v1 clients use.
CAIP2_TO_LEGACY = {
    "eip155:84532": "base-sepolia",
    "eip155:8453": "base",
}
LEGACY_TO_CAIP2 = {v: k for k, v in CAIP2_TO_LEGACY.items()}


def to_legacy_network(network: str) -> str:
    return CAIP2_TO_LEGACY.get(network, network)


def to_caip2_network(network: str) -> str:
    return LEGACY_TO_CAIP2.get(network, network)


def networks_match(a: str, b: str) -> bool:
    return to_caip2_network(a) == to_caip2_network(b)


def chain_id_for_network(network: str) -> int:
    caip2 = to_caip2_network(network)
    if caip2.startswith("eip155:"):
        return int(caip2.split(":", 1)[1])
    raise ValueError(f"x402_network_unsupported:{network}")


def parse_price(price: Any) -> Decimal:
    """Parse ``"$0.01"``, ``"0.01"`` or a number into a USD amount."""
    text = str(price).strip().lstrip("$").strip()
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"invalid_price:{price}") from exc
    if value <= 0:
        raise ValueError(f"invalid_price:{price}")
    return value


def to_atomic_units(amount: Decimal, decimals: int = USDC_DECIMALS) -> int:
    """USD amount -> token base units (truncating below the token's precision)."""
    scaled = (Decimal(amount) * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_atomic_units(value: int | str, decimals: int = USDC_DECIMALS) -> Decimal:
    return Decimal(int(value)) / (Decimal(10) ** decimals)


def encode_header(data: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(data, separators=(",", ":")).encode()).decode()


def decode_header(header_value: str) -> dict[str, Any]:
    try:
        data = json.loads(base64.b64decode(header_value))
    except Exception as exc:
        raise ValueError(f"invalid_x402_header: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("invalid_x402_header: expected a JSON object")
    return data


@dataclass(slots=True)
class PaymentRequirements:
    """One accepted way to pay for a resource."""
    network: str
    max_amount_required: str  # token base units
    resource: str
    pay_to: str
    asset: str
    scheme: str = SCHEME_EXACT
    description: str = ""
    mime_type: str = "application/json"
    max_timeout_seconds: int = 60
    extra: dict[str, Any] = field(default_factory=lambda: {"name": "USDC", "version": "2"})

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentRequirements":
        # v2 servers send ``amount`` where v1 servers send ``maxAmountRequired``.
        amount = data.get("maxAmountRequired", data.get("amount"))
        if amount is None or not data.get("payTo") or not data.get("network"):
            raise ValueError("invalid_payment_requirements: network, payTo and amount are required")
        return cls(
            scheme=data.get("scheme", SCHEME_EXACT),
            network=data["network"],
            max_amount_required=str(amount),
            resource=data.get("resource", ""),
            description=data.get("description", ""),
            mime_type=data.get("mimeType", "application/json"),
            pay_to=data["payTo"],
            max_timeout_seconds=int(data.get("maxTimeoutSeconds", 60)),
            asset=data.get("asset", ""),
            extra=dict(data.get("extra") or {}),
        )


@dataclass(slots=True)
class PaymentRequired:
    """Body of a 402 response: every accepted payment option."""
    accepts: list[PaymentRequirements]
    error: str = "Payment required"
    x402_version: int = X402_VERSION_1

    def to_dict(self) -> dict[str, Any]:
        return {
            "x402Version": self.x402_version,
            "error": self.error,
            "accepts": [r.to_dict() for r in self.accepts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentRequired":
        accepts = data.get("accepts")
        if not isinstance(accepts, list) or not accepts:
            raise ValueError("invalid_payment_required: no accepted payment options")
        return cls(
            accepts=[PaymentRequirements.from_dict(r) for r in accepts],
            error=data.get("error", "Payment required"),
            x402_version=int(data.get("x402Version", X402_VERSION_1)),
        )

    def select(self, network: str, scheme: str = SCHEME_EXACT) -> Optional[PaymentRequirements]:
        for requirement in self.accepts:
            if requirement.scheme == scheme and networks_match(requirement.network, network):
                return requirement
        return None


@dataclass(slots=True)
class ExactAuthorization:
    """ERC-3009 TransferWithAuthorization fields as carried in the payload."""
    from_address: str
    to_address: str
    value: str
    valid_after: str
    valid_before: str
    nonce: str  # 0x-prefixed 32-byte hex

    def to_dict(self) -> dict[str, str]:
        return {
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExactAuthorization":
        return cls(
            from_address=data["from"],
            to_address=data["to"],
            value=str(data["value"]),
            valid_after=str(data["validAfter"]),
            valid_before=str(data["validBefore"]),
            nonce=data["nonce"],
        )


@dataclass(slots=True)
class PaymentPayload:
    """Client-constructed payment for the ``exact`` scheme."""
    network: str
    signature: str
    authorization: ExactAuthorization
    scheme: str = SCHEME_EXACT
    x402_version: int = X402_VERSION_1

    def to_dict(self) -> dict[str, Any]:
        return {
            "x402Version": self.x402_version,
            "scheme": self.scheme,
            "network": self.network,
            "payload": {
                "signature": self.signature,
                "authorization": self.authorization.to_dict(),
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentPayload":
        try:
            inner = data["payload"]
            return cls(
                x402_version=int(data.get("x402Version", X402_VERSION_1)),
                scheme=data.get("scheme", SCHEME_EXACT),
                network=data["network"],
                signature=inner["signature"],
                authorization=ExactAuthorization.from_dict(inner["authorization"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"invalid_payment_payload: missing {exc}") from exc


@dataclass(slots=True)
class SettlementResponse:
    """Receipt returned after a payment is settled."""
    success: bool
    network: str
    transaction: str = ""
    payer: str = ""
    error_reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "transaction": self.transaction,
            "network": self.network,
            "payer": self.payer,
        }
        if self.error_reason:
            data["errorReason"] = self.error_reason
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SettlementResponse":
        return cls(
            success=bool(data.get("success", False)),
            network=data.get("network", ""),
            transaction=data.get("transaction") or "",
            payer=data.get("payer", ""),
            error_reason=data.get("errorReason"),
        )


class X402HeaderBuilder:
    """Constructs and parses x402 headers."""

    @staticmethod
    def build_payment_required_header(required: PaymentRequired) -> dict[str, str]:
        return {X402_PAYMENT_REQUIRED_HEADER: encode_header(required.to_dict())}

    @staticmethod
    def build_payment_header(payload: PaymentPayload) -> dict[str, str]:
        """v1 clients send ``X-PAYMENT``; v2 clients send ``PAYMENT-SIGNATURE``."""
        name = X402_PAYMENT_SIGNATURE_HEADER if payload.x402_version >= X402_VERSION_2 else X402_V1_PAYMENT_HEADER
        return {name: encode_header(payload.to_dict())}

    @staticmethod
    def build_payment_response_header(settlement: SettlementResponse, x402_version: int = X402_VERSION_1) -> dict[str, str]:
        encoded = encode_header(settlement.to_dict())
        name = X402_PAYMENT_RESPONSE_HEADER if x402_version >= X402_VERSION_2 else X402_V1_PAYMENT_RESPONSE_HEADER
        return {name: encoded}

    @staticmethod
    def parse_payment_header(header_value: str) -> PaymentPayload:
        return PaymentPayload.from_dict(decode_header(header_value))

    @staticmethod
    def parse_payment_response_header(header_value: str) -> SettlementResponse:
        return SettlementResponse.from_dict(decode_header(header_value))


def find_payment_header(headers: Any) -> Optional[str]:
    """The payment header from a request, whichever version sent it."""
    return headers.get(X402_PAYMENT_SIGNATURE_HEADER) or headers.get(X402_V1_PAYMENT_HEADER)


def find_payment_response_header(headers: Any) -> Optional[str]:
    return headers.get(X402_PAYMENT_RESPONSE_HEADER) or headers.get(X402_V1_PAYMENT_RESPONSE_HEADER)


def validate_x402_version(version: Any) -> tuple[bool, Optional[str]]:
    try:
        if int(version) in X402_SUPPORTED_VERSIONS:
            return True, None
    except (TypeError, ValueError):
        pass
    return False, f"x402_version_unsupported:{version}"


__all__ = [
    "X402_PAYMENT_REQUIRED_HEADER",
    "X402_PAYMENT_SIGNATURE_HEADER",
    "X402_PAYMENT_RESPONSE_HEADER",
    "X402_V1_PAYMENT_HEADER",
    "X402_V1_PAYMENT_RESPONSE_HEADER",
    "X402_VERSION_1",
    "X402_VERSION_2",
    "SCHEME_EXACT",
    "DEFAULT_NETWORK",
    "CAIP2_TO_LEGACY",
    "ExactAuthorization",
    "PaymentPayload",
    "PaymentRequired",
    "PaymentRequirements",
    "SettlementResponse",
    "X402HeaderBuilder",
    "chain_id_for_network",
    "decode_header",
    "encode_header",
    "find_payment_header",
    "find_payment_response_header",
    "from_atomic_units",
    "networks_match",
    "parse_price",
    "to_atomic_units",
    "to_caip2_network",
    "to_legacy_network",
    "validate_x402_version",
]
