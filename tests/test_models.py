"""Tests for intentcast_core.models."""
from __future__ import annotations

from decimal import Decimal

import pydantic
import pytest

from intentcast_core.models import (
    ACCEPTED_STATUSES,
    UNACCEPTED_STATUSES,
    ExplicitProviderProfile,
    Intent,
    IntentStatus,
    Provider,
)

from marketplace_helpers import PROVIDER_WALLET, make_explicit_intent, make_intent, make_offer, make_provider


class TestIdentifiers:
    def test_prefixes(self):
        intent = make_intent()
        provider = make_provider()
        offer = make_offer(intent.id, provider.id)

        assert intent.id.startswith("int_") and len(intent.id) == 12
        assert offer.id.startswith("off_") and len(offer.id) == 12
        assert provider.id.startswith("prov_") and len(provider.id) == 13


class TestIntent:
    def test_legacy_wire_shape(self):
        """Should serialize with camelCase keys and the contract schema version."""
        data = make_intent().to_dict()

        assert data["status"] == "active"
        assert data["maxPriceUsdc"] == "1.00"
        assert data["contract"]["schemaVersion"] == "1.0"
        assert data["contract"]["category"] == "translation"
        assert data["stake"]["verified"] is False
        assert "acceptedOfferId" not in data

    def test_explicit_category_comes_from_requires(self):
        intent = make_explicit_intent(category="code-review")

        assert intent.schema_version == "2.0"
        assert intent.category == "code-review"

    def test_matched_requires_accepted_offer(self):
        with pytest.raises(pydantic.ValidationError):
            make_intent(status=IntentStatus.MATCHED)

    def test_active_cannot_carry_accepted_offer(self):
        with pytest.raises(pydantic.ValidationError):
            make_intent(accepted_offer_id="off_12345678")

    @pytest.mark.parametrize("status", [
        IntentStatus.CANCELLED,
        IntentStatus.EXPIRED,
        IntentStatus.DISPUTED,
    ])
    def test_unmatched_statuses_cannot_carry_accepted_offer(self, status):
        with pytest.raises(pydantic.ValidationError):
            make_intent(status=status, accepted_offer_id="off_12345678")

        assert make_intent(status=status).accepted_offer_id is None

    def test_every_status_has_an_accepted_offer_rule(self):
        assert ACCEPTED_STATUSES | UNACCEPTED_STATUSES == set(IntentStatus)
        assert not ACCEPTED_STATUSES & UNACCEPTED_STATUSES

    def test_with_changes_checks_invariants(self):
        intent = make_intent()

        with pytest.raises(ValueError):
            intent.with_changes(status=IntentStatus.COMPLETED)

        matched = intent.with_changes(status=IntentStatus.MATCHED, accepted_offer_id="off_12345678")
        assert matched.status == IntentStatus.MATCHED
        assert matched.updated_at >= intent.updated_at

    def test_round_trip_through_dict(self):
        intent = make_explicit_intent()
        restored = Intent.from_dict(intent.to_dict())

        assert restored == intent


class TestOffer:
    def test_price_must_be_positive(self):
        with pytest.raises(pydantic.ValidationError):
            make_offer("int_1", "prov_1", price="0")

    def test_default_terms_are_legacy(self):
        offer = make_offer("int_1", "prov_1")

        assert offer.schema_version == "1.0"
        assert offer.to_dict()["priceUsdc"] == "0.50"


class TestProvider:
    def test_legacy_price_lookup_is_case_insensitive(self):
        provider = make_provider(pricing={"Translation": "0.40"})

        assert provider.price_for("translation") == Decimal("0.40")
        assert provider.price_for("summarization") is None

    def test_explicit_profile_categories_are_unique(self):
        provider = Provider(
            agent_id="agent-reviewer",
            wallet=PROVIDER_WALLET,
            name="Reviewer",
            profile=ExplicitProviderProfile.model_validate({
                "capabilities": [
                    {
                        "category": "code-review",
                        "name": "Python review",
                        "description": "Reviews Python",
                        "acceptsInputTypes": ["code"],
                        "producesOutputFormats": ["markdown"],
                    },
                    {
                        "category": "code-review",
                        "name": "Go review",
                        "description": "Reviews Go",
                        "acceptsInputTypes": ["code"],
                        "producesOutputFormats": ["markdown"],
                    },
                ],
                "pricing": [{"category": "code-review", "basePrice": "1.25", "unit": "per_task"}],
            }),
        )

        assert provider.categories == ["code-review"]
        assert provider.price_for("CODE-REVIEW") == Decimal("1.25")
        assert provider.schema_version == "2.0"

    def test_summary_hides_wallet_unless_asked(self):
        provider = make_provider()

        assert "wallet" not in provider.summary()
        assert provider.summary(include_wallet=True)["wallet"] == PROVIDER_WALLET
