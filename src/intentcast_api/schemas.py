"""Request bodies for the REST API.

Create requests come in two shapes. The legacy shape carries a bare category
(intents), category strings (providers) or a delivery estimate in minutes
(offers); the explicit shape carries the full contract. Each body is a tagged
union so one validation pass reports every offending field of the chosen
shape.
"""
from __future__ import annotations

from abc import abstractmethod
from datetime import timedelta
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import Discriminator, Field, Tag, field_validator
from web3 import Web3

from intentcast_core.models import (
    CapabilityDeclaration,
    ContractModel,
    DeliveryCommitment,
    ExplicitIntentContract,
    ExplicitOfferTerms,
    ExplicitProviderProfile,
    InputSpec,
    Intent,
    IntentContext,
    IntentContract,
    LegacyIntentContract,
    LegacyOfferTerms,
    LegacyProviderProfile,
    Offer,
    OfferTerms,
    OutputSpec,
    PriceBreakdown,
    PricingDeclaration,
    Provider,
    ProviderProfile,
    RequiredCapabilities,
    Stake,
    UrgencyLevel,
    X402Declaration,
    utc_now,
)


def _check_wallet(value: str) -> str:
    if not Web3.is_address(value):
        raise ValueError("must be a 0x-prefixed 20-byte address")
    return value


def _check_positive(value: Decimal) -> Decimal:
    if value <= 0:
        raise ValueError("must be greater than 0")
    return value


# =============================================================================
# Intents
# =============================================================================

class _IntentRequestBase(ContractModel):
    max_price_usdc: Decimal
    requester_wallet: str = Field(..., min_length=1)
    stake_tx_hash: str = Field(..., min_length=1)
    stake_amount: Decimal
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    urgency: UrgencyLevel = UrgencyLevel.NORMAL
    deadline_hours: Optional[int] = Field(default=None, gt=0)

    @field_validator("requester_wallet")
    @classmethod
    def valid_wallet(cls, v: str) -> str:
        return _check_wallet(v)

    @field_validator("max_price_usdc")
    @classmethod
    def positive_ceiling(cls, v: Decimal) -> Decimal:
        return _check_positive(v)

    @field_validator("stake_amount")
    @classmethod
    def non_negative_stake(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @abstractmethod
    def _contract(self) -> IntentContract:
        """The versioned intent payload for this request shape."""

    def to_intent(self, default_deadline_hours: int) -> Intent:
        hours = self.deadline_hours or default_deadline_hours
        return Intent(
            title=getattr(self, "title", None),
            description=self.description,
            contract=self._contract(),
            tags=self.tags,
            urgency=self.urgency,
            max_price_usdc=self.max_price_usdc,
            stake=Stake(tx_hash=self.stake_tx_hash, amount=self.stake_amount),
            deadline=Intent.deadline_from_hours(hours),
            requester_wallet=self.requester_wallet,
        )


class LegacyIntentRequest(_IntentRequestBase):
    title: Optional[str] = None
    category: str = Field(..., min_length=1)
    requirements: Dict[str, Any] = Field(default_factory=dict)

    def _contract(self) -> LegacyIntentContract:
        return LegacyIntentContract(category=self.category, requirements=self.requirements)


class ExplicitIntentRequest(_IntentRequestBase):
    title: str = Field(..., min_length=1)
    input: InputSpec
    output: OutputSpec
    requires: RequiredCapabilities
    argument_hint: Optional[str] = None
    context: Optional[IntentContext] = None

    def _contract(self) -> ExplicitIntentContract:
        return ExplicitIntentContract(
            input=self.input,
            output=self.output,
            requires=self.requires,
            argument_hint=self.argument_hint,
            context=self.context,
        )


def _intent_shape(value: Any) -> str:
    if isinstance(value, dict):
        explicit = any(key in value for key in ("input", "output", "requires"))
    else:
        explicit = isinstance(value, ExplicitIntentRequest)
    return "explicit" if explicit else "legacy"


CreateIntentRequest = Annotated[
    Union[
        Annotated[LegacyIntentRequest, Tag("legacy")],
        Annotated[ExplicitIntentRequest, Tag("explicit")],
    ],
    Discriminator(_intent_shape),
]


# =============================================================================
# Offers
# =============================================================================

class _OfferRequestBase(ContractModel):
    provider_id: str = Field(..., min_length=1)
    price_usdc: Decimal
    expires_in_hours: Optional[int] = Field(default=None, gt=0)

    @field_validator("price_usdc")
    @classmethod
    def positive_price(cls, v: Decimal) -> Decimal:
        return _check_positive(v)

    @abstractmethod
    def _terms(self) -> OfferTerms:
        """The versioned offer payload for this request shape."""

    def to_offer(self, intent_id: str) -> Offer:
        now = utc_now()
        return Offer(
            intent_id=intent_id,
            provider_id=self.provider_id,
            price_usdc=self.price_usdc,
            terms=self._terms(),
            expires_at=now + timedelta(hours=self.expires_in_hours) if self.expires_in_hours else None,
            created_at=now,
            updated_at=now,
        )


class LegacyOfferRequest(_OfferRequestBase):
    estimated_delivery_minutes: Optional[int] = Field(default=None, gt=0)
    message: Optional[str] = None

    def _terms(self) -> LegacyOfferTerms:
        return LegacyOfferTerms(
            estimated_delivery_minutes=self.estimated_delivery_minutes,
            message=self.message,
        )


class ExplicitOfferRequest(_OfferRequestBase):
    commitment: DeliveryCommitment
    price_breakdown: Optional[PriceBreakdown] = None
    qualifications: Optional[str] = None

    def _terms(self) -> ExplicitOfferTerms:
        return ExplicitOfferTerms(
            commitment=self.commitment,
            price_breakdown=self.price_breakdown,
            qualifications=self.qualifications,
        )


def _offer_shape(value: Any) -> str:
    if isinstance(value, dict):
        explicit = "commitment" in value or "priceBreakdown" in value or "price_breakdown" in value
    else:
        explicit = isinstance(value, ExplicitOfferRequest)
    return "explicit" if explicit else "legacy"


SubmitOfferRequest = Annotated[
    Union[
        Annotated[LegacyOfferRequest, Tag("legacy")],
        Annotated[ExplicitOfferRequest, Tag("explicit")],
    ],
    Discriminator(_offer_shape),
]


class AcceptOfferRequest(ContractModel):
    offer_id: str = Field(..., min_length=1)


# =============================================================================
# Providers
# =============================================================================

class _ProviderRequestBase(ContractModel):
    agent_id: str = Field(..., min_length=1)
    wallet: str = Field(..., min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    argument_hint: Optional[str] = None
    avatar_url: Optional[str] = None
    tags: Optional[List[str]] = None
    languages: Optional[List[str]] = None
    certifications: Optional[List[str]] = None
    website_url: Optional[str] = None
    api_endpoint: Optional[str] = None
    x402: Optional[X402Declaration] = None

    @field_validator("wallet")
    @classmethod
    def valid_wallet(cls, v: str) -> str:
        return _check_wallet(v)

    @field_validator("api_endpoint", "website_url", "avatar_url")
    @classmethod
    def http_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return v

    @abstractmethod
    def _profile(self) -> ProviderProfile:
        """The versioned provider payload for this request shape."""

    def to_provider(self) -> Provider:
        return Provider(
            agent_id=self.agent_id,
            wallet=self.wallet,
            name=self.name,
            description=self.description,
            argument_hint=self.argument_hint,
            avatar_url=self.avatar_url,
            profile=self._profile(),
            tags=self.tags,
            languages=self.languages,
            certifications=self.certifications,
            website_url=self.website_url,
            api_endpoint=self.api_endpoint,
            x402=self.x402,
        )


class LegacyProviderRequest(_ProviderRequestBase):
    capabilities: List[str] = Field(..., min_length=1)
    pricing: Dict[str, Decimal] = Field(default_factory=dict)

    def _profile(self) -> LegacyProviderProfile:
        return LegacyProviderProfile(capabilities=self.capabilities, pricing=self.pricing)


class ExplicitProviderRequest(_ProviderRequestBase):
    name: str = Field(..., min_length=1)
    capabilities: List[CapabilityDeclaration] = Field(..., min_length=1)
    pricing: List[PricingDeclaration] = Field(..., min_length=1)

    def _profile(self) -> ExplicitProviderProfile:
        return ExplicitProviderProfile(capabilities=self.capabilities, pricing=self.pricing)


def _provider_shape(value: Any) -> str:
    if isinstance(value, dict):
        capabilities = value.get("capabilities")
        explicit = isinstance(value.get("pricing"), list) or (
            isinstance(capabilities, list) and any(isinstance(c, dict) for c in capabilities)
        )
    else:
        explicit = isinstance(value, ExplicitProviderRequest)
    return "explicit" if explicit else "legacy"


RegisterProviderRequest = Annotated[
    Union[
        Annotated[LegacyProviderRequest, Tag("legacy")],
        Annotated[ExplicitProviderRequest, Tag("explicit")],
    ],
    Discriminator(_provider_shape),
]


# =============================================================================
# Payments
# =============================================================================

class ReleasePaymentRequest(ContractModel):
    intent_id: str = Field(..., min_length=1)
    confirm_completion: bool = False


class FulfillRequest(ContractModel):
    input: Any = None
    endpoint: Optional[str] = None
