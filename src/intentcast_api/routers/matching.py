"""Matching engine routes."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ..dependencies import ApiDependencies, get_deps

router = APIRouter(tags=["matching"])


@router.get("/stats")
async def match_stats(deps: ApiDependencies = Depends(get_deps)) -> dict[str, Any]:
    return {"stats": await deps.matching.stats()}


@router.get("/intents/{intent_id}/providers")
async def providers_for_intent(
    intent_id: str,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    """Online providers for an intent, highest score first."""
    intent = await deps.controller.get_intent(intent_id)
    matches = await deps.matching.match_providers_for_intent(intent)
    return {
        "intentId": intent_id,
        "category": intent.category,
        "matchCount": len(matches),
        "matches": [m.to_dict() for m in matches],
    }


@router.get("/providers/{provider_id}/intents")
async def intents_for_provider(
    provider_id: str,
    deps: ApiDependencies = Depends(get_deps),
) -> dict[str, Any]:
    provider = await deps.controller.get_provider(provider_id)
    matches = await deps.matching.match_intents_for_provider(provider)
    return {
        "providerId": provider_id,
        "providerName": provider.name,
        "matchCount": len(matches),
        "matches": [m.to_dict() for m in matches],
    }
