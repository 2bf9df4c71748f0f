"""Lifecycle controller for intents, offers and providers.

Intent states::

    active --accept offer--> matched --fulfilment confirmed--> completed
    active --cancel--> cancelled

Every status change goes through a compare-and-set on the record store, so
two concurrent accepts on one intent cannot both succeed. Ledger calls are
awaited without any store lock held.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, AsyncIterator, Optional, Protocol

from .exceptions import (
    AuthorizationError,
    ConflictError,
    DependencyNotConfiguredError,
    InsufficientBalanceError,
    NotFoundError,
    TransactionFailedError,
    ValidationError,
)
from .models import (
    Intent,
    IntentStatus,
    Offer,
    OfferStatus,
    Provider,
    ProviderStatus,
    utc_now,
)
from .store.base import AcceptedOffer, ProviderRegistration, RecordStore, ensure_intent_active

logger = logging.getLogger(__name__)


class TransferOutcome(Protocol):
    success: bool
    tx_hash: Optional[str]
    error: Optional[str]


class LedgerService(Protocol):
    """The subset of the ledger client the controller relies on."""

    async def verify_stake(self, wallet: str, min_amount: Decimal) -> bool: ...

    async def get_balance(self, address: str) -> Decimal: ...

    async def execute_transfer(self, to: str, amount: Decimal, private_key: str) -> TransferOutcome: ...


@dataclass
class FulfillmentTarget:
    """Everything needed to pay for and deliver one matched intent."""
    intent: Intent
    offer: Offer
    provider: Provider


@dataclass
class PaymentRecord:
    intent_id: str
    offer_id: str
    provider_id: str
    provider_wallet: str
    amount: Decimal
    tx_hash: str
    currency: str = "USDC"
    network: str = "base-sepolia"

    def to_dict(self) -> dict[str, Any]:
        return {
            "intentId": self.intent_id,
            "offerId": self.offer_id,
            "providerId": self.provider_id,
            "providerWallet": self.provider_wallet,
            "amount": str(self.amount),
            "currency": self.currency,
            "network": self.network,
            "txHash": self.tx_hash,
        }


def _same_wallet(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


class LifecycleController:
    """Legal state transitions of intents and offers, on top of a ``RecordStore``."""

    def __init__(
        self,
        store: RecordStore,
        ledger: Optional[LedgerService] = None,
        service_wallet_address: str = "",
        service_wallet_private_key: str = "",
        network: str = "base-sepolia",
    ):
        self.store = store
        self.ledger = ledger
        self.service_wallet_address = service_wallet_address
        self.service_wallet_private_key = service_wallet_private_key
        self.network = network
        # Intents with a payout or fulfilment currently running in this process.
        self._settling: set[str] = set()

    # -- intents ------------------------------------------------------------

    async def _check_stake(self, wallet: str, amount: Decimal) -> bool:
        if self.ledger is None:
            return False
        try:
            return bool(await self.ledger.verify_stake(wallet, amount))
        except Exception as e:
            # Fail closed: a ledger error never counts as a verified stake.
            logger.warning("Stake verification failed for %s: %s", wallet, e)
            return False

    async def create_intent(self, intent: Intent) -> Intent:
        verified = await self._check_stake(intent.requester_wallet, intent.stake.amount)
        intent = intent.model_copy(
            update={"stake": intent.stake.model_copy(update={"verified": verified})}
        )
        created = await self.store.create_intent(intent)
        logger.info("Intent created: %s (stake verified: %s)", created.id, verified)
        return created

    async def get_intent(self, intent_id: str) -> Intent:
        intent = await self.store.get_intent(intent_id)
        if intent is None:
            raise NotFoundError("Intent", intent_id)
        return intent

    async def list_intents(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        requester_wallet: Optional[str] = None,
    ) -> list[Intent]:
        return await self.store.list_intents(
            status=status, category=category, requester_wallet=requester_wallet
        )

    async def reverify_stake(self, intent_id: str) -> Intent:
        """Re-run the ledger check for an intent whose stake is not yet verified."""
        intent = await self.get_intent(intent_id)
        if intent.stake_verified:
            return intent
        verified = await self._check_stake(intent.requester_wallet, intent.stake.amount)
        if not verified:
            return intent
        updated = intent.with_changes(stake=intent.stake.model_copy(update={"verified": True}))
        return await self.store.update_intent(updated)

    def ensure_requester(self, intent: Intent, caller_wallet: Optional[str]) -> None:
        if caller_wallet and not _same_wallet(caller_wallet, intent.requester_wallet):
            raise AuthorizationError(
                "Authenticated wallet is not the requester of this intent",
                details={"intent_id": intent.id},
            )

    async def cancel_intent(self, intent_id: str, caller_wallet: Optional[str] = None) -> Intent:
        intent = await self.get_intent(intent_id)
        self.ensure_requester(intent, caller_wallet)
        ensure_intent_active(intent, "cancel intent")
        cancelled = await self.store.transition_intent(
            intent_id, {IntentStatus.ACTIVE}, IntentStatus.CANCELLED
        )
        logger.info("Intent cancelled: %s", intent_id)
        return cancelled

    async def complete_intent(self, intent_id: str) -> Intent:
        completed = await self.store.transition_intent(
            intent_id,
            {IntentStatus.MATCHED, IntentStatus.IN_PROGRESS},
            IntentStatus.COMPLETED,
        )
        logger.info("Intent completed: %s", intent_id)
        return completed

    # -- offers -------------------------------------------------------------

    async def submit_offer(self, offer: Offer, caller_wallet: Optional[str] = None) -> Offer:
        intent = await self.get_intent(offer.intent_id)
        ensure_intent_active(intent, "submit offer")
        provider = await self.store.get_provider(offer.provider_id)
        if provider is None:
            raise ValidationError("Provider not found", field="providerId")
        if caller_wallet and not _same_wallet(caller_wallet, provider.wallet):
            raise AuthorizationError("Authenticated wallet does not own this provider")
        # The store re-checks status, ceiling and duplicates atomically.
        created = await self.store.create_offer(offer)
        logger.info(
            "Offer submitted: %s by %s on %s at %s USDC",
            created.id, created.provider_id, created.intent_id, created.price_usdc,
        )
        return created

    async def get_offer(self, offer_id: str) -> Offer:
        offer = await self.store.get_offer(offer_id)
        if offer is None:
            raise NotFoundError("Offer", offer_id)
        return offer

    async def list_offers_for_intent(self, intent_id: str) -> tuple[Intent, list[dict[str, Any]]]:
        """Offers in submission order, each with a compact provider summary."""
        intent = await self.get_intent(intent_id)
        offers = await self.store.list_offers_by_intent(intent_id)
        enriched = []
        providers: dict[str, Optional[Provider]] = {}
        for offer in offers:
            if offer.provider_id not in providers:
                providers[offer.provider_id] = await self.store.get_provider(offer.provider_id)
            provider = providers[offer.provider_id]
            entry = offer.to_dict()
            entry["provider"] = provider.summary() if provider else None
            enriched.append(entry)
        return intent, enriched

    async def list_offers_for_provider(self, provider_id: str) -> list[Offer]:
        await self.get_provider(provider_id)
        return await self.store.list_offers_by_provider(provider_id)

    async def withdraw_offer(self, offer_id: str, caller_wallet: Optional[str] = None) -> Offer:
        offer = await self.get_offer(offer_id)
        if caller_wallet:
            provider = await self.store.get_provider(offer.provider_id)
            if provider is None or not _same_wallet(caller_wallet, provider.wallet):
                raise AuthorizationError("Only the offering provider can withdraw an offer")
        withdrawn = await self.store.transition_offer(
            offer_id, {OfferStatus.PENDING}, OfferStatus.WITHDRAWN
        )
        logger.info("Offer withdrawn: %s", offer_id)
        return withdrawn

    async def accept_offer(
        self,
        intent_id: str,
        offer_id: str,
        caller_wallet: Optional[str] = None,
    ) -> tuple[AcceptedOffer, Optional[Provider]]:
        intent = await self.get_intent(intent_id)
        self.ensure_requester(intent, caller_wallet)
        result = await self.store.accept_offer(intent_id, offer_id)
        provider = await self.store.get_provider(result.offer.provider_id)
        logger.info(
            "Offer accepted: %s for intent %s (%d sibling offers rejected)",
            offer_id, intent_id, len(result.rejected),
        )
        return result, provider

    # -- providers ----------------------------------------------------------

    async def register_provider(self, provider: Provider) -> ProviderRegistration:
        registration = await self.store.register_provider(provider)
        logger.info(
            "Provider %s: %s (%s)",
            "registered" if registration.created else "updated",
            registration.provider.id,
            registration.provider.agent_id,
        )
        return registration

    async def get_provider(self, provider_id: str) -> Provider:
        provider = await self.store.get_provider(provider_id)
        if provider is None:
            raise NotFoundError("Provider", provider_id)
        return provider

    async def list_providers(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Provider]:
        return await self.store.list_providers(status=status, category=category)

    async def mark_provider_offline(self, provider_id: str, caller_wallet: Optional[str] = None) -> Provider:
        provider = await self.get_provider(provider_id)
        if caller_wallet and not _same_wallet(caller_wallet, provider.wallet):
            raise AuthorizationError("Authenticated wallet does not own this provider")
        updated = await self.store.update_provider(
            provider.with_changes(status=ProviderStatus.OFFLINE, last_seen=utc_now())
        )
        logger.info("Provider offline: %s", provider_id)
        return updated

    # -- settlement ---------------------------------------------------------

    @asynccontextmanager
    async def settling(self, intent_id: str) -> AsyncIterator[None]:
        """Claim an intent for one payout or fulfilment at a time in this process."""
        if intent_id in self._settling:
            raise ConflictError(
                "Payment already in progress for this intent",
                current_state=IntentStatus.MATCHED.value,
            )
        self._settling.add(intent_id)
        try:
            yield
        finally:
            self._settling.discard(intent_id)

    async def resolve_fulfillment(self, intent_id: str) -> FulfillmentTarget:
        """Load the matched intent with its accepted offer and provider."""
        intent = await self.get_intent(intent_id)
        if intent.status != IntentStatus.MATCHED:
            raise ConflictError(
                f"Intent is {intent.status.value}, must be matched",
                current_state=intent.status.value,
            )
        offer = await self.store.get_offer(intent.accepted_offer_id)
        if offer is None:
            raise NotFoundError("Offer", intent.accepted_offer_id)
        provider = await self.store.get_provider(offer.provider_id)
        if provider is None:
            raise NotFoundError("Provider", offer.provider_id)
        return FulfillmentTarget(intent=intent, offer=offer, provider=provider)

    async def service_wallet_balance(self) -> Decimal:
        if self.ledger is None:
            raise DependencyNotConfiguredError("ledger")
        if not self.service_wallet_address:
            raise DependencyNotConfiguredError("service_wallet_address")
        return await self.ledger.get_balance(self.service_wallet_address)

    async def release_payment(
        self,
        intent_id: str,
        confirm_completion: bool = False,
        caller_wallet: Optional[str] = None,
    ) -> tuple[PaymentRecord, Intent]:
        """Manual payout: transfer the offer price to the provider, then complete."""
        if not confirm_completion:
            raise ValidationError(
                "Must confirm completion",
                field="confirmCompletion",
                details={"hint": "Set confirmCompletion: true to release payment"},
            )
        if self.ledger is None:
            raise DependencyNotConfiguredError("ledger")
        if not self.service_wallet_private_key:
            raise DependencyNotConfiguredError("service_wallet_private_key")

        async with self.settling(intent_id):
            target = await self.resolve_fulfillment(intent_id)
            self.ensure_requester(target.intent, caller_wallet)
            amount = target.offer.price_usdc

            balance = await self.service_wallet_balance()
            if balance < amount:
                raise InsufficientBalanceError(
                    "Insufficient service wallet balance",
                    available=str(balance),
                    required=str(amount),
                )

            logger.info("Releasing payment: %s USDC to %s", amount, target.provider.wallet)
            outcome = await self.ledger.execute_transfer(
                target.provider.wallet, amount, self.service_wallet_private_key
            )
            if not outcome.success:
                raise TransactionFailedError(
                    "Payment transfer failed",
                    tx_hash=outcome.tx_hash,
                    reason=outcome.error,
                )

            completed = await self.complete_intent(intent_id)
            logger.info("Payment released: %s", outcome.tx_hash)
            record = PaymentRecord(
                intent_id=intent_id,
                offer_id=target.offer.id,
                provider_id=target.provider.id,
                provider_wallet=target.provider.wallet,
                amount=amount,
                tx_hash=outcome.tx_hash or "",
                network=self.network,
            )
            return record, completed

    # -- reporting ----------------------------------------------------------

    async def list_categories(self) -> list[dict[str, Any]]:
        """Distinct categories seen among providers and intents."""
        counts: dict[str, dict[str, Any]] = {}

        def entry(category: str) -> dict[str, Any]:
            key = category.lower()
            if key not in counts:
                counts[key] = {"category": category, "providerCount": 0, "activeIntentCount": 0}
            return counts[key]

        for provider in await self.store.list_providers():
            for category in provider.categories:
                entry(category)["providerCount"] += 1
        for intent in await self.store.list_intents(status=IntentStatus.ACTIVE.value):
            entry(intent.category)["activeIntentCount"] += 1
        return sorted(counts.values(), key=lambda c: c["category"].lower())
