"""Volatile, map-backed record store.

Status changes on one intent (accepting an offer, submitting an offer,
cancelling) are serialized by a per-intent ``asyncio.Lock``. No lock is ever
held across network I/O: the store itself performs none.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from ..exceptions import ConflictError, NotFoundError
from ..models import Intent, IntentStatus, Offer, OfferStatus, Provider, utc_now
from .base import (
    AcceptedOffer,
    ProviderRegistration,
    RecordStore,
    ensure_offer_acceptable,
    ensure_offer_admissible,
    filter_intents,
    filter_providers,
    refreshed_registration,
)

class InMemoryRecordStore(RecordStore):
    """In-memory record store (swap for SqlRecordStore in production)."""

    backend = "memory"

    def __init__(self) -> None:
        self._intents: dict[str, Intent] = {}
        self._offers: dict[str, Offer] = {}
        self._providers: dict[str, Provider] = {}
        self._intent_locks: dict[str, asyncio.Lock] = {}
        self._registration_lock = asyncio.Lock()

    def _intent_lock(self, intent_id: str) -> asyncio.Lock:
        return self._intent_locks.setdefault(intent_id, asyncio.Lock())

    # -- intents ------------------------------------------------------------

    async def create_intent(self, intent: Intent) -> Intent:
        if intent.id in self._intents:
            raise ConflictError(f"Intent '{intent.id}' already exists")
        self._intents[intent.id] = intent
        return intent

    async def get_intent(self, intent_id: str) -> Optional[Intent]:
        return self._intents.get(intent_id)

    async def list_intents(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        requester_wallet: Optional[str] = None,
    ) -> list[Intent]:
        result = filter_intents(self._intents.values(), status, category, requester_wallet)
        return sorted(result, key=lambda i: i.created_at, reverse=True)

    async def update_intent(self, intent: Intent) -> Intent:
        async with self._intent_lock(intent.id):
            current = self._intents.get(intent.id)
            if current is None:
                raise NotFoundError("Intent", intent.id)
            # Status is owned by transition_intent; never overwrite it here.
            merged = intent.with_changes(
                status=current.status,
                accepted_offer_id=current.accepted_offer_id,
            )
            self._intents[intent.id] = merged
            return merged

    async def transition_intent(
        self,
        intent_id: str,
        expected: set[IntentStatus],
        new_status: IntentStatus,
        **changes: Any,
    ) -> Intent:
        async with self._intent_lock(intent_id):
            current = self._intents.get(intent_id)
            if current is None:
                raise NotFoundError("Intent", intent_id)
            if current.status not in expected:
                raise ConflictError(
                    f"Intent is {current.status.value}",
                    current_state=current.status.value,
                )
            updated = current.with_changes(status=new_status, **changes)
            self._intents[intent_id] = updated
            return updated

    async def delete_intent(self, intent_id: str) -> bool:
        return self._intents.pop(intent_id, None) is not None

    # -- offers -------------------------------------------------------------

    async def create_offer(self, offer: Offer) -> Offer:
        async with self._intent_lock(offer.intent_id):
            intent = self._intents.get(offer.intent_id)
            if intent is None:
                raise NotFoundError("Intent", offer.intent_id)
            siblings = [o for o in self._offers.values() if o.intent_id == offer.intent_id]
            ensure_offer_admissible(intent, offer, siblings)
            self._offers[offer.id] = offer
            return offer

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        return self._offers.get(offer_id)

    async def list_offers_by_intent(self, intent_id: str) -> list[Offer]:
        result = [o for o in self._offers.values() if o.intent_id == intent_id]
        return sorted(result, key=lambda o: o.created_at)

    async def list_offers_by_provider(self, provider_id: str) -> list[Offer]:
        result = [o for o in self._offers.values() if o.provider_id == provider_id]
        return sorted(result, key=lambda o: o.created_at, reverse=True)

    async def transition_offer(
        self,
        offer_id: str,
        expected: set[OfferStatus],
        new_status: OfferStatus,
    ) -> Offer:
        offer = self._offers.get(offer_id)
        if offer is None:
            raise NotFoundError("Offer", offer_id)
        # Offer transitions race with accept, which holds the intent lock.
        async with self._intent_lock(offer.intent_id):
            current = self._offers[offer_id]
            if current.status not in expected:
                raise ConflictError(
                    f"Offer is {current.status.value}",
                    current_state=current.status.value,
                )
            updated = current.with_changes(status=new_status)
            self._offers[offer_id] = updated
            return updated

    async def accept_offer(self, intent_id: str, offer_id: str) -> AcceptedOffer:
        async with self._intent_lock(intent_id):
            intent = self._intents.get(intent_id)
            offer = self._offers.get(offer_id)
            ensure_offer_acceptable(intent_id, offer_id, intent, offer)

            now = utc_now()
            accepted = offer.with_changes(status=OfferStatus.ACCEPTED, updated_at=now)
            matched = intent.with_changes(
                status=IntentStatus.MATCHED,
                accepted_offer_id=offer_id,
                updated_at=now,
            )
            rejected = []
            for sibling in list(self._offers.values()):
                if (
                    sibling.intent_id == intent_id
                    and sibling.id != offer_id
                    and sibling.status == OfferStatus.PENDING
                ):
                    rejected.append(sibling.with_changes(status=OfferStatus.REJECTED, updated_at=now))

            # Commit only after every new record was built successfully.
            self._offers[offer_id] = accepted
            self._intents[intent_id] = matched
            for sibling in rejected:
                self._offers[sibling.id] = sibling
            return AcceptedOffer(intent=matched, offer=accepted, rejected=rejected)

    async def delete_offer(self, offer_id: str) -> bool:
        return self._offers.pop(offer_id, None) is not None

    # -- providers ----------------------------------------------------------

    async def register_provider(self, provider: Provider) -> ProviderRegistration:
        async with self._registration_lock:
            existing = await self.get_provider_by_agent_id(provider.agent_id)
            if existing is None:
                self._providers[provider.id] = provider
                return ProviderRegistration(provider=provider, created=True)
            refreshed = refreshed_registration(existing, provider)
            self._providers[existing.id] = refreshed
            return ProviderRegistration(provider=refreshed, created=False)

    async def get_provider(self, provider_id: str) -> Optional[Provider]:
        return self._providers.get(provider_id)

    async def get_provider_by_agent_id(self, agent_id: str) -> Optional[Provider]:
        for provider in self._providers.values():
            if provider.agent_id == agent_id:
                return provider
        return None

    async def list_providers(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Provider]:
        result = filter_providers(self._providers.values(), status, category)
        return sorted(result, key=lambda p: p.registered_at, reverse=True)

    async def update_provider(self, provider: Provider) -> Provider:
        if provider.id not in self._providers:
            raise NotFoundError("Provider", provider.id)
        self._providers[provider.id] = provider
        return provider

    async def delete_provider(self, provider_id: str) -> bool:
        return self._providers.pop(provider_id, None) is not None

    def clear(self) -> None:
        """Drop every record (test helper)."""
        self._intents.clear()
        self._offers.clear()
        self._providers.clear()
        self._intent_locks.clear()
