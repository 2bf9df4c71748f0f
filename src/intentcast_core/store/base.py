"""Record Store interface shared by the volatile and durable backends.

The lifecycle controller and matching engine only ever see ``RecordStore``.
Every method that changes status is a compare-and-set: it names the statuses
it expects to find and fails with ``ConflictError`` (stating the current
status) when another request got there first.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models import Intent, IntentStatus, Offer, OfferStatus, Provider, ProviderStatus


@dataclass(slots=True)
class AcceptedOffer:
    """Outcome of an atomic accept: the matched intent, the winner and the rejected siblings."""
    intent: Intent
    offer: Offer
    rejected: list[Offer] = field(default_factory=list)


@dataclass(slots=True)
class ProviderRegistration:
    provider: Provider
    created: bool


def category_matches(categories: Iterable[str], wanted: str) -> bool:
    """Exact, case-insensitive membership used by list filters."""
    wanted = wanted.lower()
    return any(c.lower() == wanted for c in categories)


def _value(status: Any) -> Optional[str]:
    if status is None:
        return None
    return status.value if hasattr(status, "value") else str(status)


def filter_intents(
    intents: Iterable[Intent],
    status: Optional[str] = None,
    category: Optional[str] = None,
    requester_wallet: Optional[str] = None,
) -> list[Intent]:
    status = _value(status)
    result = []
    for intent in intents:
        if status and intent.status.value != status:
            continue
        if category and intent.category.lower() != category.lower():
            continue
        if requester_wallet and intent.requester_wallet.lower() != requester_wallet.lower():
            continue
        result.append(intent)
    return result


def filter_providers(
    providers: Iterable[Provider],
    status: Optional[str] = None,
    category: Optional[str] = None,
) -> list[Provider]:
    status = _value(status)
    return [
        p for p in providers
        if (not status or p.status.value == status)
        and (not category or category_matches(p.categories, category))
    ]


class RecordStore(ABC):
    """Key-indexed collections for intents, offers and providers."""

    backend: str = "abstract"

    async def initialize(self) -> None:
        """Prepare the backend (create schema, open pools)."""

    async def close(self) -> None:
        """Release backend resources."""

    # -- intents ------------------------------------------------------------

    @abstractmethod
    async def create_intent(self, intent: Intent) -> Intent: ...

    @abstractmethod
    async def get_intent(self, intent_id: str) -> Optional[Intent]: ...

    @abstractmethod
    async def list_intents(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        requester_wallet: Optional[str] = None,
    ) -> list[Intent]:
        """Newest first."""

    @abstractmethod
    async def update_intent(self, intent: Intent) -> Intent:
        """Replace non-status fields (e.g. stake verification)."""

    @abstractmethod
    async def transition_intent(
        self,
        intent_id: str,
        expected: set[IntentStatus],
        new_status: IntentStatus,
        **changes: Any,
    ) -> Intent:
        """Move an intent to ``new_status`` only if it currently sits in ``expected``."""

    @abstractmethod
    async def delete_intent(self, intent_id: str) -> bool: ...

    # -- offers -------------------------------------------------------------

    @abstractmethod
    async def create_offer(self, offer: Offer) -> Offer:
        """Insert a pending offer.

        Atomically re-checks that the intent is active and that the provider
        holds no other pending offer on it.
        """

    @abstractmethod
    async def get_offer(self, offer_id: str) -> Optional[Offer]: ...

    @abstractmethod
    async def list_offers_by_intent(self, intent_id: str) -> list[Offer]:
        """Oldest first (submission order)."""

    @abstractmethod
    async def list_offers_by_provider(self, provider_id: str) -> list[Offer]:
        """Newest first."""

    @abstractmethod
    async def transition_offer(
        self,
        offer_id: str,
        expected: set[OfferStatus],
        new_status: OfferStatus,
    ) -> Offer: ...

    @abstractmethod
    async def accept_offer(self, intent_id: str, offer_id: str) -> AcceptedOffer:
        """Accept one offer, match the intent and reject pending siblings as one unit."""

    @abstractmethod
    async def delete_offer(self, offer_id: str) -> bool: ...

    # -- providers ----------------------------------------------------------

    @abstractmethod
    async def register_provider(self, provider: Provider) -> ProviderRegistration:
        """Insert, or refresh the record with the same ``agent_id``."""

    @abstractmethod
    async def get_provider(self, provider_id: str) -> Optional[Provider]: ...

    @abstractmethod
    async def get_provider_by_agent_id(self, agent_id: str) -> Optional[Provider]: ...

    @abstractmethod
    async def list_providers(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Provider]:
        """Most recently registered first."""

    @abstractmethod
    async def update_provider(self, provider: Provider) -> Provider: ...

    @abstractmethod
    async def delete_provider(self, provider_id: str) -> bool: ...

    # -- monitoring ---------------------------------------------------------

    async def stats(self) -> dict[str, Any]:
        intents = await self.list_intents()
        providers = await self.list_providers()
        by_status: dict[str, int] = {}
        offers = 0
        for intent in intents:
            by_status[intent.status.value] = by_status.get(intent.status.value, 0) + 1
            offers += len(await self.list_offers_by_intent(intent.id))
        return {
            "backend": self.backend,
            "intents": len(intents),
            "offers": offers,
            "providers": len(providers),
            "onlineProviders": sum(1 for p in providers if p.status == ProviderStatus.ONLINE),
            "intentsByStatus": by_status,
        }


def ensure_intent_active(intent: Intent, action: str) -> None:
    if intent.status != IntentStatus.ACTIVE:
        raise ConflictError(
            f"Cannot {action}: Intent is {intent.status.value}",
            current_state=intent.status.value,
        )


def ensure_offer_acceptable(
    intent_id: str,
    offer_id: str,
    intent: Optional[Intent],
    offer: Optional[Offer],
) -> None:
    """Preconditions of accept, evaluated against the latest stored records."""
    if intent is None:
        raise NotFoundError("Intent", intent_id)
    if offer is None:
        raise NotFoundError("Offer", offer_id)
    ensure_intent_active(intent, "accept offer")
    if offer.intent_id != intent.id:
        raise ValidationError(
            "Offer does not belong to this intent",
            field="offerId",
            details={"intent_id": intent.id, "offer_intent_id": offer.intent_id},
        )
    if offer.status != OfferStatus.PENDING:
        raise ConflictError(
            f"Cannot accept offer: Offer is {offer.status.value}",
            current_state=offer.status.value,
        )


def ensure_offer_admissible(intent: Intent, offer: Offer, existing: Iterable[Offer]) -> None:
    """Preconditions of submit: active intent, price within ceiling, first pending bid wins."""
    ensure_intent_active(intent, "submit offer")
    if offer.price_usdc > intent.max_price_usdc:
        raise ConflictError(
            "Price exceeds max",
            details={
                "max_price_usdc": str(intent.max_price_usdc),
                "offered_price": str(offer.price_usdc),
            },
        )
    for other in existing:
        if other.provider_id == offer.provider_id and other.status == OfferStatus.PENDING:
            raise ConflictError(
                "Provider already has a pending offer on this intent",
                current_state=other.status.value,
                details={"existing_offer_id": other.id},
            )


def refreshed_registration(existing: Provider, incoming: Provider) -> Provider:
    """Merge a re-registration into the existing record (acts as a heartbeat)."""
    return incoming.model_copy(
        update={
            "id": existing.id,
            "registered_at": existing.registered_at,
            "completed_jobs": existing.completed_jobs,
            "rating": existing.rating,
            "rating_count": existing.rating_count,
            "status": ProviderStatus.ONLINE,
            "last_seen": incoming.last_seen,
        }
    )


__all__ = [
    "AcceptedOffer",
    "ProviderRegistration",
    "RecordStore",
    "category_matches",
    "ensure_intent_active",
    "ensure_offer_acceptable",
    "ensure_offer_admissible",
    "filter_intents",
    "filter_providers",
    "refreshed_registration",
]
