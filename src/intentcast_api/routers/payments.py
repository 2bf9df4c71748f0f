"""Manual payout routes."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends

from intentcast_protocol.auth import AuthContext

from ..dependencies import ApiDependencies, get_deps
from ..middleware.auth import caller_wallet, require_wallet
from ..schemas import ReleasePaymentRequest

router = APIRouter(tags=["payments"])


@router.post("/release")
async def release_payment(
    payload: ReleasePaymentRequest,
    deps: ApiDependencies = Depends(get_deps),
    auth: Optional[AuthContext] = Depends(require_wallet),
) -> dict[str, Any]:
    """
    Transfer the accepted offer's price to the provider and complete the intent.

    Fallback for providers without an x402 endpoint. Requires
    ``confirmCompletion: true``.
    """
    record, intent = await deps.controller.release_payment(
        payload.intent_id,
        confirm_completion=payload.confirm_completion,
        caller_wallet=caller_wallet(auth),
    )
    return {"success": True, "payment": record.to_dict(), "intent": intent.to_dict()}


@router.get("/balance")
async def service_wallet_balance(
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    balance = await deps.controller.service_wallet_balance()
    return {
        "wallet": deps.controller.service_wallet_address,
        "balance": str(balance),
        "currency": "USDC",
        "network": deps.controller.network,
    }
