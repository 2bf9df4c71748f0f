"""x402 client for calling provider endpoints with automatic payment handling.

Flow:
1) Make the request without payment
2) On 402 Payment Required, pick the requirement for our network and sign an
   ERC-3009 authorization with the paying wallet
3) Retry with the payment header attached
4) Return the response body plus the settlement receipt, when present

Every failure (network, timeout, malformed challenge, non-2xx) comes back as
a ``FulfillmentResult`` with ``success=False``; nothing is raised.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from eth_account import Account

from .erc3009 import build_authorization, sign_authorization
from .verifier import domain_for
from .x402 import (
    DEFAULT_NETWORK,
    X402_PAYMENT_REQUIRED_HEADER,
    PaymentPayload,
    PaymentRequired,
    X402HeaderBuilder,
    decode_header,
    find_payment_response_header,
)

logger = logging.getLogger(__name__)


@dataclass
class FulfillmentResult:
    success: bool
    data: Any = None
    payment_tx_hash: Optional[str] = None
    error: Optional[str] = None
    status: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "paymentTxHash": self.payment_tx_hash,
            "error": self.error,
            "status": self.status,
        }


def normalize_private_key(private_key: str) -> str:
    """``0x`` + 64 hex characters, or ValueError."""
    key = (private_key or "").strip()
    if not key.startswith("0x"):
        key = "0x" + key
    if len(key) != 66:
        raise ValueError(f"Invalid private key length: expected 66 chars (0x + 64 hex), got {len(key)}")
    return key


def _parse_payment_required(response: httpx.Response) -> PaymentRequired:
    header = response.headers.get(X402_PAYMENT_REQUIRED_HEADER)
    if header:
        return PaymentRequired.from_dict(decode_header(header))
    try:
        body = response.json()
    except ValueError as exc:
        raise ValueError("invalid_payment_required: 402 without requirements") from exc
    return PaymentRequired.from_dict(body)


def _settlement_tx_hash(response: httpx.Response) -> Optional[str]:
    header = find_payment_response_header(response.headers)
    if not header:
        return None
    try:
        tx = decode_header(header).get("transaction")
    except ValueError:
        logger.debug("Ignoring undecodable settlement receipt")
        return None
    return tx if isinstance(tx, str) and tx else None


def _body(response: httpx.Response) -> Any:
    if "application/json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class X402PaymentClient:
    """Pays x402-protected endpoints from one wallet."""

    def __init__(
        self,
        private_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._private_key = private_key
        self.timeout = timeout
        self.transport = transport

    async def call(
        self,
        endpoint: str,
        method: str = "POST",
        body: Any = None,
        network: str = DEFAULT_NETWORK,
        headers: Optional[dict[str, str]] = None,
        max_amount: Optional[int] = None,
    ) -> FulfillmentResult:
        """Call ``endpoint``, paying at most ``max_amount`` base units when challenged."""
        try:
            key = normalize_private_key(self._private_key)
            payer = Account.from_key(key)
        except ValueError as e:
            return FulfillmentResult(success=False, error=str(e))

        request_headers = dict(headers or {})
        kwargs: dict[str, Any] = {}
        if method.upper() != "GET" and body is not None:
            kwargs["json"] = body

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, endpoint, headers=request_headers, **kwargs)

                if response.status_code == 402:
                    required = _parse_payment_required(response)
                    requirement = required.select(network)
                    if requirement is None:
                        return FulfillmentResult(
                            success=False,
                            error=f"No accepted payment option for network {network}",
                            status=402,
                        )
                    amount = int(requirement.max_amount_required)
                    if max_amount is not None and amount > max_amount:
                        return FulfillmentResult(
                            success=False,
                            error=f"Payment required ({amount}) exceeds maximum ({max_amount})",
                            status=402,
                        )

                    auth = build_authorization(
                        payer.address,
                        requirement.pay_to,
                        amount,
                        timeout_seconds=requirement.max_timeout_seconds,
                    )
                    payload = PaymentPayload(
                        network=requirement.network,
                        signature=sign_authorization(key, auth, domain_for(requirement)),
                        authorization=auth,
                        x402_version=required.x402_version,
                    )
                    request_headers.update(X402HeaderBuilder.build_payment_header(payload))
                    logger.info("Paying %s base units to %s for %s", amount, requirement.pay_to, endpoint)
                    response = await client.request(method, endpoint, headers=request_headers, **kwargs)

        except httpx.TimeoutException:
            return FulfillmentResult(success=False, error=f"Request timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            return FulfillmentResult(success=False, error=f"Provider unreachable: {e}")
        except (ValueError, KeyError) as e:
            return FulfillmentResult(success=False, error=str(e), status=402)
        except Exception as e:
            logger.exception("x402 call to %s failed", endpoint)
            return FulfillmentResult(success=False, error=str(e))

        status = response.status_code
        tx_hash = _settlement_tx_hash(response)
        if not response.is_success:
            data = _body(response)
            error = data if isinstance(data, str) else json.dumps(data)
            return FulfillmentResult(
                success=False,
                error=error or response.reason_phrase,
                status=status,
                payment_tx_hash=tx_hash,
            )
        return FulfillmentResult(success=True, data=_body(response), payment_tx_hash=tx_hash, status=status)


__all__ = ["FulfillmentResult", "X402PaymentClient", "normalize_private_key"]
