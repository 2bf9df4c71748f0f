"""Fulfilment: pay the accepted provider's x402 endpoint for a matched intent."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from intentcast_core.exceptions import DependencyNotConfiguredError, ValidationError
from intentcast_core.lifecycle import LifecycleController
from intentcast_core.models import Provider

from .client import FulfillmentResult, X402PaymentClient
from .x402 import DEFAULT_NETWORK, to_atomic_units

logger = logging.getLogger(__name__)


def provider_fulfill_url(api_endpoint: Optional[str]) -> str:
    """The provider's ``/fulfill`` URL derived from its declared endpoint."""
    if not api_endpoint:
        return ""
    if api_endpoint.endswith("/fulfill"):
        return api_endpoint
    return api_endpoint.rstrip("/") + "/fulfill"


def provider_network(provider: Provider) -> str:
    if provider.x402 and provider.x402.network:
        return provider.x402.network
    return DEFAULT_NETWORK


@dataclass
class FulfillmentOutcome:
    intent_id: str
    provider_id: str
    offer_id: str
    provider_endpoint: str
    result: FulfillmentResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "intentId": self.intent_id,
            "providerId": self.provider_id,
            "offerId": self.offer_id,
            "providerEndpoint": self.provider_endpoint,
            "x402": self.result.to_dict(),
        }


class FulfillmentFlow:
    """Resolves the accepted offer and drives the 402 -> sign -> retry loop.

    Does not change intent state; the caller completes the intent once
    ``result.success`` is true.
    """

    def __init__(
        self,
        controller: LifecycleController,
        private_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.controller = controller
        self.private_key = private_key
        self.timeout = timeout
        self.transport = transport

    async def fulfill(
        self,
        intent_id: str,
        payload: Any = None,
        endpoint: Optional[str] = None,
        caller_wallet: Optional[str] = None,
    ) -> FulfillmentOutcome:
        target = await self.controller.resolve_fulfillment(intent_id)
        self.controller.ensure_requester(target.intent, caller_wallet)
        provider = target.provider

        provider_endpoint = endpoint or provider_fulfill_url(provider.api_endpoint)
        if not provider_endpoint:
            raise ValidationError(
                "Provider has no apiEndpoint",
                field="endpoint",
                details={"provider_id": provider.id},
            )
        if not self.private_key:
            raise DependencyNotConfiguredError(
                "service_wallet_private_key",
                "SERVICE_WALLET_PRIVATE_KEY not configured (required to pay providers via x402)",
            )

        client = X402PaymentClient(self.private_key, timeout=self.timeout, transport=self.transport)
        result = await client.call(
            provider_endpoint,
            method="POST",
            body={"intentId": intent_id, "input": payload},
            network=provider_network(provider),
            max_amount=to_atomic_units(target.offer.price_usdc),
        )
        if result.success:
            logger.info("Fulfilment succeeded for %s (tx %s)", intent_id, result.payment_tx_hash)
        else:
            logger.warning("Fulfilment failed for %s: %s (status %s)", intent_id, result.error, result.status)

        return FulfillmentOutcome(
            intent_id=intent_id,
            provider_id=provider.id,
            offer_id=target.offer.id,
            provider_endpoint=provider_endpoint,
            result=result,
        )


__all__ = ["FulfillmentFlow", "FulfillmentOutcome", "provider_fulfill_url", "provider_network"]
