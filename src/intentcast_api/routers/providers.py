"""Provider routes: register, list, get, offline, offers and matches."""
from __future__ import annotations

from typing import Annotated, Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status

from intentcast_core.exceptions import AuthorizationError
from intentcast_protocol.auth import AuthContext

from ..dependencies import ApiDependencies, get_deps
from ..middleware.auth import caller_wallet, require_wallet
from ..schemas import RegisterProviderRequest

router = APIRouter(tags=["providers"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_provider(
    payload: Annotated[RegisterProviderRequest, Body()],
    response: Response,
    deps: ApiDependencies = Depends(get_deps),
    auth: Optional[AuthContext] = Depends(require_wallet),
) -> dict[str, Any]:
    """
    Register a provider, or refresh it when ``agentId`` is already known.

    Returns 201 for a new provider and 200 for a re-registration.
    """
    wallet = caller_wallet(auth)
    if wallet and wallet.lower() != payload.wallet.lower():
        raise AuthorizationError("wallet must match the authenticated wallet")

    registration = await deps.controller.register_provider(payload.to_provider())
    if not registration.created:
        response.status_code = status.HTTP_200_OK
    return {
        "success": True,
        "created": registration.created,
        "provider": registration.provider.to_dict(),
    }


@router.get("")
async def list_providers(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    category: Optional[str] = None,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    providers = await deps.controller.list_providers(status=status_filter, category=category)
    return {"count": len(providers), "providers": [p.to_dict() for p in providers]}


@router.get("/{provider_id}")
async def get_provider(
    provider_id: str,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    provider = await deps.controller.get_provider(provider_id)
    return {"provider": provider.to_dict()}


@router.delete("/{provider_id}")
async def mark_offline(
    provider_id: str,
    deps: ApiDependencies = Depends(get_deps),
    auth: Optional[AuthContext] = Depends(require_wallet),
) -> dict[str, Any]:
    """Mark a provider offline. The record is kept."""
    provider = await deps.controller.mark_provider_offline(provider_id, caller_wallet=caller_wallet(auth))
    return {"success": True, "message": "Provider marked offline", "provider": provider.to_dict()}


@router.get("/{provider_id}/offers")
async def list_provider_offers(
    provider_id: str,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    offers = await deps.controller.list_offers_for_provider(provider_id)
    return {"providerId": provider_id, "count": len(offers), "offers": [o.to_dict() for o in offers]}


@router.get("/{provider_id}/matches")
async def match_intents(
    provider_id: str,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    """Active intents this provider could serve, best match first."""
    provider = await deps.controller.get_provider(provider_id)
    matches = await deps.matching.match_intents_for_provider(provider)
    return {
        "providerId": provider_id,
        "providerName": provider.name,
        "matchCount": len(matches),
        "matches": [m.to_dict() for m in matches],
    }
