"""Reference x402-protected provider.

``POST /fulfill`` answers 402 with payment requirements until a valid
``exact`` payment is attached, then settles it and returns the work result
with a settlement receipt header.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from intentcast_core.config import LedgerConfig
from intentcast_protocol.settlement import Settler, SimulatedSettler, X402SettlementStatus, X402Settler
from intentcast_protocol.verifier import PaymentVerifier
from intentcast_protocol.x402 import (
    DEFAULT_NETWORK,
    X402_VERSION_1,
    PaymentRequired,
    PaymentRequirements,
    X402HeaderBuilder,
    find_payment_header,
    parse_price,
    to_atomic_units,
)

logger = logging.getLogger(__name__)


def _payment_required(requirements: PaymentRequirements, error: str, x402_version: int) -> JSONResponse:
    required = PaymentRequired(accepts=[requirements], error=error, x402_version=x402_version)
    return JSONResponse(
        status_code=402,
        content=required.to_dict(),
        headers=X402HeaderBuilder.build_payment_required_header(required),
    )


def create_demo_provider_app(
    pay_to: str,
    price: Any = "$0.01",
    network: str = DEFAULT_NETWORK,
    settler: Optional[Settler] = None,
    asset: Optional[str] = None,
    x402_version: int = X402_VERSION_1,
) -> FastAPI:
    """Build the demo provider charging ``price`` USDC per call to ``pay_to``."""
    app = FastAPI(title="IntentCast Demo Provider")
    x402 = X402Settler(verifier=PaymentVerifier(), settler=settler or SimulatedSettler())
    requirements = PaymentRequirements(
        network=network,
        max_amount_required=str(to_atomic_units(parse_price(price))),
        resource="/fulfill",
        pay_to=pay_to,
        asset=asset or LedgerConfig().usdc_address,
        description="Demo IntentCast fulfillment",
    )
    app.state.x402 = x402
    app.state.requirements = requirements

    @app.post("/fulfill")
    async def fulfill(request: Request):
        header = find_payment_header(request.headers)
        if not header:
            return _payment_required(requirements, "Payment required", x402_version)

        try:
            payload = X402HeaderBuilder.parse_payment_header(header)
        except ValueError as e:
            return _payment_required(requirements, str(e), x402_version)

        settlement = await x402.verify(payload, requirements)
        if settlement.status != X402SettlementStatus.VERIFIED:
            logger.info("Rejected payment from %s: %s", payload.authorization.from_address, settlement.error)
            return _payment_required(requirements, settlement.error or "Payment rejected", x402_version)

        settlement = await x402.settle(settlement)
        if settlement.status != X402SettlementStatus.SETTLED:
            return _payment_required(requirements, settlement.error or "Settlement failed", x402_version)

        try:
            body = await request.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        intent_id = body.get("intentId")
        data = body.get("input")
        preview = data[:50] if isinstance(data, str) else ""

        return JSONResponse(
            content={
                "success": True,
                "intentId": intent_id,
                "result": f'Processed intent {intent_id}: "{preview}..."',
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            headers=X402HeaderBuilder.build_payment_response_header(
                settlement.to_response(), payload.x402_version
            ),
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "x402": True}

    return app


__all__ = ["create_demo_provider_app"]
