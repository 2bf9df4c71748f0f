"""Offer routes addressed by offer id."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends

from intentcast_protocol.auth import AuthContext

from ..dependencies import ApiDependencies, get_deps
from ..middleware.auth import caller_wallet, require_wallet

router = APIRouter(tags=["offers"])


@router.get("/{offer_id}")
async def get_offer(
    offer_id: str,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    offer = await deps.controller.get_offer(offer_id)
    return {"offer": offer.to_dict()}


@router.delete("/{offer_id}")
async def withdraw_offer(
    offer_id: str,
    deps: ApiDependencies = Depends(get_deps),
    auth: Optional[AuthContext] = Depends(require_wallet),
) -> dict[str, Any]:
    """Withdraw a pending offer. Only the offering provider may do this."""
    offer = await deps.controller.withdraw_offer(offer_id, caller_wallet=caller_wallet(auth))
    return {"success": True, "message": "Offer withdrawn", "offer": offer.to_dict()}
