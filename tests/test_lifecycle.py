"""Tests for intentcast_core.lifecycle.LifecycleController."""
from __future__ import annotations

from decimal import Decimal

import pytest

from intentcast_core.exceptions import (
    AuthorizationError,
    ConflictError,
    DependencyNotConfiguredError,
    InsufficientBalanceError,
    NotFoundError,
    TransactionFailedError,
    ValidationError,
)
from intentcast_core.lifecycle import LifecycleController
from intentcast_core.models import IntentStatus, OfferStatus, ProviderStatus

from marketplace_helpers import (
    OTHER_PROVIDER_WALLET,
    PROVIDER_WALLET,
    REQUESTER_WALLET,
    SERVICE_WALLET,
    make_intent,
    make_offer,
    make_provider,
)


async def _matched(controller, price: str = "0.50"):
    intent = await controller.create_intent(make_intent())
    provider = (await controller.register_provider(make_provider())).provider
    offer = await controller.submit_offer(make_offer(intent.id, provider.id, price=price))
    result, _ = await controller.accept_offer(intent.id, offer.id)
    return result.intent, offer, provider


class TestCreateIntent:
    @pytest.mark.asyncio
    async def test_stake_verified_when_balance_covers_it(self, controller, ledger):
        ledger.balances[REQUESTER_WALLET.lower()] = Decimal("5")

        intent = await controller.create_intent(make_intent())

        assert intent.stake_verified is True
        assert (await controller.get_intent(intent.id)).stake_verified is True

    @pytest.mark.asyncio
    async def test_stake_unverified_when_balance_short(self, controller):
        intent = await controller.create_intent(make_intent())

        assert intent.stake_verified is False
        assert intent.status == IntentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_ledger_failure_fails_closed(self, controller, ledger):
        ledger.balances[REQUESTER_WALLET.lower()] = Decimal("5")
        ledger.unavailable = True

        intent = await controller.create_intent(make_intent())

        assert intent.stake_verified is False

    @pytest.mark.asyncio
    async def test_without_ledger_stake_is_unverified(self, store):
        controller = LifecycleController(store)

        intent = await controller.create_intent(make_intent(stake_verified=True))

        assert intent.stake_verified is False

    @pytest.mark.asyncio
    async def test_reverify_stake(self, controller, ledger):
        intent = await controller.create_intent(make_intent())
        ledger.balances[REQUESTER_WALLET.lower()] = Decimal("1")

        updated = await controller.reverify_stake(intent.id)

        assert updated.stake_verified is True


class TestCancelIntent:
    @pytest.mark.asyncio
    async def test_cancel_active(self, controller):
        intent = await controller.create_intent(make_intent())

        cancelled = await controller.cancel_intent(intent.id, caller_wallet=REQUESTER_WALLET.lower())

        assert cancelled.status == IntentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_matched_is_conflict(self, controller):
        intent, _, _ = await _matched(controller)

        with pytest.raises(ConflictError) as exc_info:
            await controller.cancel_intent(intent.id)
        assert "matched" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_only_requester_may_cancel(self, controller):
        intent = await controller.create_intent(make_intent())

        with pytest.raises(AuthorizationError):
            await controller.cancel_intent(intent.id, caller_wallet=PROVIDER_WALLET)

    @pytest.mark.asyncio
    async def test_missing_intent(self, controller):
        with pytest.raises(NotFoundError):
            await controller.cancel_intent("int_missing")


class TestOffers:
    @pytest.mark.asyncio
    async def test_unknown_provider(self, controller):
        intent = await controller.create_intent(make_intent())

        with pytest.raises(ValidationError):
            await controller.submit_offer(make_offer(intent.id, "prov_missing"))

    @pytest.mark.asyncio
    async def test_caller_must_own_provider(self, controller):
        intent = await controller.create_intent(make_intent())
        provider = (await controller.register_provider(make_provider())).provider

        with pytest.raises(AuthorizationError):
            await controller.submit_offer(
                make_offer(intent.id, provider.id), caller_wallet=OTHER_PROVIDER_WALLET
            )

    @pytest.mark.asyncio
    async def test_listing_carries_provider_summary(self, controller):
        intent = await controller.create_intent(make_intent())
        provider = (await controller.register_provider(make_provider())).provider
        await controller.submit_offer(make_offer(intent.id, provider.id), caller_wallet=PROVIDER_WALLET)

        loaded, offers = await controller.list_offers_for_intent(intent.id)

        assert loaded.id == intent.id
        assert offers[0]["provider"]["id"] == provider.id
        assert "wallet" not in offers[0]["provider"]

    @pytest.mark.asyncio
    async def test_withdraw(self, controller):
        intent = await controller.create_intent(make_intent())
        provider = (await controller.register_provider(make_provider())).provider
        offer = await controller.submit_offer(make_offer(intent.id, provider.id))

        with pytest.raises(AuthorizationError):
            await controller.withdraw_offer(offer.id, caller_wallet=OTHER_PROVIDER_WALLET)

        withdrawn = await controller.withdraw_offer(offer.id, caller_wallet=PROVIDER_WALLET)
        assert withdrawn.status == OfferStatus.WITHDRAWN

        with pytest.raises(ConflictError):
            await controller.withdraw_offer(offer.id)

    @pytest.mark.asyncio
    async def test_accept_returns_provider_and_rejections(self, controller):
        intent = await controller.create_intent(make_intent())
        first = (await controller.register_provider(make_provider(agent_id="first"))).provider
        second = (await controller.register_provider(
            make_provider(agent_id="second", wallet=OTHER_PROVIDER_WALLET)
        )).provider
        winner = await controller.submit_offer(make_offer(intent.id, first.id))
        loser = await controller.submit_offer(make_offer(intent.id, second.id, price="0.40"))

        result, provider = await controller.accept_offer(intent.id, winner.id, caller_wallet=REQUESTER_WALLET)

        assert provider.id == first.id
        assert result.intent.accepted_offer_id == winner.id
        assert [o.id for o in result.rejected] == [loser.id]

    @pytest.mark.asyncio
    async def test_only_requester_may_accept(self, controller):
        intent = await controller.create_intent(make_intent())
        provider = (await controller.register_provider(make_provider())).provider
        offer = await controller.submit_offer(make_offer(intent.id, provider.id))

        with pytest.raises(AuthorizationError):
            await controller.accept_offer(intent.id, offer.id, caller_wallet=PROVIDER_WALLET)
        assert (await controller.get_intent(intent.id)).status == IntentStatus.ACTIVE


class TestProviders:
    @pytest.mark.asyncio
    async def test_mark_offline(self, controller):
        provider = (await controller.register_provider(make_provider())).provider

        with pytest.raises(AuthorizationError):
            await controller.mark_provider_offline(provider.id, caller_wallet=OTHER_PROVIDER_WALLET)

        offline = await controller.mark_provider_offline(provider.id, caller_wallet=PROVIDER_WALLET)
        assert offline.status == ProviderStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_list_categories(self, controller):
        await controller.register_provider(make_provider(agent_id="a", capabilities=["translation", "summarization"]))
        await controller.register_provider(make_provider(agent_id="b"))
        await controller.create_intent(make_intent(category="Translation"))

        categories = await controller.list_categories()

        assert categories == [
            {"category": "summarization", "providerCount": 1, "activeIntentCount": 0},
            {"category": "translation", "providerCount": 2, "activeIntentCount": 1},
        ]


class TestCompleteIntent:
    @pytest.mark.asyncio
    async def test_complete_matched(self, controller):
        intent, _, _ = await _matched(controller)

        completed = await controller.complete_intent(intent.id)

        assert completed.status == IntentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_complete_active_is_conflict(self, controller):
        intent = await controller.create_intent(make_intent())

        with pytest.raises(ConflictError):
            await controller.complete_intent(intent.id)


class TestReleasePayment:
    @pytest.mark.asyncio
    async def test_requires_confirmation(self, controller):
        intent, _, _ = await _matched(controller)

        with pytest.raises(ValidationError):
            await controller.release_payment(intent.id)

    @pytest.mark.asyncio
    async def test_releases_offer_price_to_provider(self, controller, ledger):
        ledger.balances[SERVICE_WALLET.lower()] = Decimal("10")
        intent, offer, provider = await _matched(controller, price="0.75")

        record, completed = await controller.release_payment(
            intent.id, confirm_completion=True, caller_wallet=REQUESTER_WALLET
        )

        assert ledger.transfers == [(PROVIDER_WALLET, Decimal("0.75"))]
        assert completed.status == IntentStatus.COMPLETED
        assert record.offer_id == offer.id
        assert record.to_dict()["amount"] == "0.75"
        assert record.to_dict()["currency"] == "USDC"
        assert record.tx_hash.startswith("0x")

    @pytest.mark.asyncio
    async def test_insufficient_service_balance(self, controller, ledger):
        ledger.balances[SERVICE_WALLET.lower()] = Decimal("0.10")
        intent, _, _ = await _matched(controller)

        with pytest.raises(InsufficientBalanceError):
            await controller.release_payment(intent.id, confirm_completion=True)
        assert (await controller.get_intent(intent.id)).status == IntentStatus.MATCHED

    @pytest.mark.asyncio
    async def test_failed_transfer_leaves_intent_matched(self, controller, ledger):
        ledger.balances[SERVICE_WALLET.lower()] = Decimal("10")
        ledger.fail_with = "Transaction reverted"
        intent, _, _ = await _matched(controller)

        with pytest.raises(TransactionFailedError):
            await controller.release_payment(intent.id, confirm_completion=True)
        assert (await controller.get_intent(intent.id)).status == IntentStatus.MATCHED

    @pytest.mark.asyncio
    async def test_active_intent_is_conflict(self, controller, ledger):
        ledger.balances[SERVICE_WALLET.lower()] = Decimal("10")
        intent = await controller.create_intent(make_intent())

        with pytest.raises(ConflictError):
            await controller.release_payment(intent.id, confirm_completion=True)

    @pytest.mark.asyncio
    async def test_without_service_key(self, store, ledger):
        controller = LifecycleController(store, ledger=ledger)

        with pytest.raises(DependencyNotConfiguredError):
            await controller.release_payment("int_any", confirm_completion=True)

    @pytest.mark.asyncio
    async def test_concurrent_release_is_rejected(self, controller, ledger):
        ledger.balances[SERVICE_WALLET.lower()] = Decimal("10")
        intent, _, _ = await _matched(controller)

        async with controller.settling(intent.id):
            with pytest.raises(ConflictError):
                await controller.release_payment(intent.id, confirm_completion=True)
        assert ledger.transfers == []
