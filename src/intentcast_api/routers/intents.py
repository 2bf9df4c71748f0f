"""Intent routes: create, list, get, cancel, offers, accept and fulfil."""
from __future__ import annotations

from typing import Annotated, Any, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from intentcast_core.exceptions import AuthorizationError, FulfillmentFailedError
from intentcast_protocol.auth import AuthContext

from ..dependencies import ApiDependencies, get_deps
from ..middleware.auth import caller_wallet, require_wallet
from ..schemas import AcceptOfferRequest, CreateIntentRequest, FulfillRequest, SubmitOfferRequest

router = APIRouter(tags=["intents"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_intent(
    payload: Annotated[CreateIntentRequest, Body()],
    deps: ApiDependencies = Depends(get_deps),
    auth: Optional[AuthContext] = Depends(require_wallet),
) -> dict[str, Any]:
    """Post a new intent; the stake is checked against the ledger before saving."""
    wallet = caller_wallet(auth)
    if wallet and wallet.lower() != payload.requester_wallet.lower():
        raise AuthorizationError("requesterWallet must match the authenticated wallet")

    intent = payload.to_intent(deps.settings.default_deadline_hours)
    created = await deps.controller.create_intent(intent)
    return {
        "success": True,
        "intent": created.to_dict(),
        "stakeVerified": created.stake_verified,
    }


@router.get("")
async def list_intents(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    category: Optional[str] = None,
    requester_wallet: Optional[str] = Query(default=None, alias="requesterWallet"),
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    intents = await deps.controller.list_intents(
        status=status_filter, category=category, requester_wallet=requester_wallet
    )
    return {"count": len(intents), "intents": [i.to_dict() for i in intents]}


@router.get("/{intent_id}")
async def get_intent(
    intent_id: str,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    intent = await deps.controller.get_intent(intent_id)
    return {"intent": intent.to_dict()}


@router.delete("/{intent_id}")
async def cancel_intent(
    intent_id: str,
    deps: ApiDependencies = Depends(get_deps),
    auth: Optional[AuthContext] = Depends(require_wallet),
) -> dict[str, Any]:
    """Cancel an active intent. The record is kept with status ``cancelled``."""
    intent = await deps.controller.cancel_intent(intent_id, caller_wallet=caller_wallet(auth))
    return {"success": True, "message": "Intent cancelled", "intent": intent.to_dict()}


@router.post("/{intent_id}/verify-stake", dependencies=[Depends(require_wallet)])
async def verify_stake(
    intent_id: str,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    intent = await deps.controller.reverify_stake(intent_id)
    return {"intent": intent.to_dict(), "stakeVerified": intent.stake_verified}


@router.post("/{intent_id}/offers", status_code=status.HTTP_201_CREATED)
async def submit_offer(
    intent_id: str,
    payload: Annotated[SubmitOfferRequest, Body()],
    deps: ApiDependencies = Depends(get_deps),
    auth: Optional[AuthContext] = Depends(require_wallet),
) -> dict[str, Any]:
    """Submit an offer. Price must not exceed the intent's ceiling."""
    offer = await deps.controller.submit_offer(
        payload.to_offer(intent_id), caller_wallet=caller_wallet(auth)
    )
    return {"success": True, "offer": offer.to_dict()}


@router.get("/{intent_id}/offers")
async def list_offers(
    intent_id: str,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    intent, offers = await deps.controller.list_offers_for_intent(intent_id)
    return {
        "intentId": intent_id,
        "intentStatus": intent.status.value,
        "count": len(offers),
        "offers": offers,
    }


@router.post("/{intent_id}/accept")
async def accept_offer(
    intent_id: str,
    payload: AcceptOfferRequest,
    deps: ApiDependencies = Depends(get_deps),
    auth: Optional[AuthContext] = Depends(require_wallet),
) -> dict[str, Any]:
    """Accept one pending offer; every other pending offer is rejected."""
    result, provider = await deps.controller.accept_offer(
        intent_id, payload.offer_id, caller_wallet=caller_wallet(auth)
    )
    return {
        "success": True,
        "message": "Offer accepted",
        "intent": result.intent.to_dict(),
        "acceptedOffer": result.offer.to_dict(),
        "rejectedOfferIds": [o.id for o in result.rejected],
        "provider": provider.summary(include_wallet=True) if provider else None,
    }


@router.post("/{intent_id}/fulfill")
async def fulfill_intent(
    intent_id: str,
    payload: Optional[FulfillRequest] = None,
    deps: ApiDependencies = Depends(get_deps),
    auth: Optional[AuthContext] = Depends(require_wallet),
) -> dict[str, Any]:
    """
    Pay the accepted provider's x402 endpoint and deliver the work.

    The intent moves to ``completed`` only when the paid request succeeds;
    otherwise it stays ``matched`` and the call may be retried.
    """
    payload = payload or FulfillRequest()
    async with deps.controller.settling(intent_id):
        outcome = await deps.fulfillment.fulfill(
            intent_id,
            payload=payload.input,
            endpoint=payload.endpoint,
            caller_wallet=caller_wallet(auth),
        )
        result = outcome.result
        if not result.success:
            raise FulfillmentFailedError(
                f"Fulfillment failed: {result.error}",
                status=result.status,
                details=outcome.to_dict(),
            )
        intent = await deps.controller.complete_intent(intent_id)

    return {
        "success": True,
        "intentId": intent_id,
        "providerId": outcome.provider_id,
        "offerId": outcome.offer_id,
        "providerResponse": result.data,
        "paymentTxHash": result.payment_tx_hash,
        "intent": intent.to_dict(),
    }
