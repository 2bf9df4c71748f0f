"""Capability matching between intents and providers.

Compatibility is category-based: a provider category matches the intent's
required category when the two are equal, or when either contains the other
(case-insensitive). Scores run 0..100:

    50  base for any compatible pair
  + 20  at most, 10 per matched category
  + 20  at most, proportional to how far the provider's price sits under the
        intent ceiling (only when price <= ceiling)
  + 10  intent stake already verified
  +  5  provider rating >= 4.5

A provider failing the intent's ``minRating`` or ``minCompletedJobs`` scores
exactly 0 and is left out of match lists.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional

from .models import Intent, IntentStatus, Provider, ProviderStatus
from .store.base import RecordStore

logger = logging.getLogger(__name__)

BASE_SCORE = 50
CAPABILITY_POINTS = 10
MAX_CAPABILITY_BONUS = 20
MAX_PRICE_BONUS = 20
STAKE_BONUS = 10
RATING_BONUS = 5
RATING_BONUS_THRESHOLD = 4.5
MAX_SCORE = 100


@dataclass
class ProviderMatch:
    provider: Provider
    score: int
    matched_capabilities: List[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.to_dict(),
            "score": self.score,
            "matchedCapabilities": self.matched_capabilities,
        }


@dataclass
class IntentMatch:
    intent: Intent
    score: int
    matched_capabilities: List[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent.to_dict(),
            "score": self.score,
            "matchedCapabilities": self.matched_capabilities,
        }


def matched_capabilities(intent: Intent, provider: Provider) -> List[str]:
    """Provider categories compatible with the intent's required category."""
    wanted = intent.category.lower()
    matched = []
    for category in provider.categories:
        declared = category.lower()
        if declared == wanted or wanted in declared or declared in wanted:
            matched.append(category)
    return matched


def is_disqualified(intent: Intent, provider: Provider) -> bool:
    requires = intent.requires
    if requires.min_rating is not None and (provider.rating or 0) < requires.min_rating:
        return True
    if requires.min_completed_jobs is not None and provider.completed_jobs < requires.min_completed_jobs:
        return True
    return False


def score_match(intent: Intent, provider: Provider, matched: Optional[List[str]] = None) -> int:
    if matched is None:
        matched = matched_capabilities(intent, provider)
    if not matched or is_disqualified(intent, provider):
        return 0

    score = BASE_SCORE
    score += min(len(matched) * CAPABILITY_POINTS, MAX_CAPABILITY_BONUS)

    price = provider.price_for(intent.category)
    ceiling = intent.max_price_usdc
    if price is not None and ceiling > 0 and price <= ceiling:
        ratio = Decimal(price) / Decimal(ceiling)
        score += math.floor((1 - ratio) * MAX_PRICE_BONUS)

    if intent.stake_verified:
        score += STAKE_BONUS
    if provider.rating is not None and provider.rating >= RATING_BONUS_THRESHOLD:
        score += RATING_BONUS

    return min(score, MAX_SCORE)


class MatchingEngine:
    """Ranks counterparties read from a ``RecordStore``."""

    def __init__(self, store: RecordStore):
        self.store = store

    def rank_providers(self, intent: Intent, providers: List[Provider]) -> List[ProviderMatch]:
        matches = []
        for provider in providers:
            caps = matched_capabilities(intent, provider)
            score = score_match(intent, provider, caps)
            if score > 0:
                matches.append(ProviderMatch(provider=provider, score=score, matched_capabilities=caps))
        # sorted() is stable: equal scores keep store order.
        return sorted(matches, key=lambda m: m.score, reverse=True)

    def rank_intents(self, provider: Provider, intents: List[Intent]) -> List[IntentMatch]:
        matches = []
        for intent in intents:
            caps = matched_capabilities(intent, provider)
            score = score_match(intent, provider, caps)
            if score > 0:
                matches.append(IntentMatch(intent=intent, score=score, matched_capabilities=caps))
        return sorted(matches, key=lambda m: m.score, reverse=True)

    async def match_providers_for_intent(self, intent: Intent) -> List[ProviderMatch]:
        providers = await self.store.list_providers(status=ProviderStatus.ONLINE.value)
        return self.rank_providers(intent, providers)

    async def match_intents_for_provider(self, provider: Provider) -> List[IntentMatch]:
        intents = await self.store.list_intents(status=IntentStatus.ACTIVE.value)
        return self.rank_intents(provider, intents)

    async def stats(self) -> dict[str, Any]:
        intents = await self.store.list_intents(status=IntentStatus.ACTIVE.value)
        providers = await self.store.list_providers(status=ProviderStatus.ONLINE.value)

        potential = sum(len(self.rank_providers(intent, providers)) for intent in intents)
        average = f"{potential / len(intents):.2f}" if intents else "0"
        return {
            "activeIntents": len(intents),
            "onlineProviders": len(providers),
            "potentialMatches": potential,
            "avgMatchesPerIntent": average,
        }
