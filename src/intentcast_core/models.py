"""Marketplace domain models: intents, offers and providers.

Each record carries a versioned payload. Schema ``1.0`` is the legacy
shape (a bare category plus free-form requirements, category strings with a
price map, delivery minutes); schema ``2.0`` is the explicit contract shape.
The variants are pydantic models discriminated by ``schemaVersion`` so each
one validates its own invariants.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:8]}"


def new_intent_id() -> str:
    return _short_id("int")


def new_offer_id() -> str:
    return _short_id("off")


def new_provider_id() -> str:
    return _short_id("prov")


class IntentCastModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to a JSON-compatible dictionary."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        """Create model from dictionary."""
        return cls.model_validate(data)


class ContractModel(IntentCastModel):
    """Strict nested contract pieces: unknown keys are rejected."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# =============================================================================
# Enumerations
# =============================================================================

class IntentStatus(str, Enum):
    ACTIVE = "active"
    MATCHED = "matched"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


# Statuses that require an accepted offer, and statuses that forbid one.
ACCEPTED_STATUSES = frozenset({IntentStatus.MATCHED, IntentStatus.IN_PROGRESS, IntentStatus.COMPLETED})
UNACCEPTED_STATUSES = frozenset(set(IntentStatus) - ACCEPTED_STATUSES)


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


class ProviderStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"
    MAINTENANCE = "maintenance"


class UrgencyLevel(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class InputType(str, Enum):
    TEXT = "text"
    CODE = "code"
    URL = "url"
    FILE = "file"
    JSON = "json"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    BINARY = "binary"


class OutputFormat(str, Enum):
    TEXT = "text"
    CODE = "code"
    JSON = "json"
    MARKDOWN = "markdown"
    HTML = "html"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    FILE = "file"
    STRUCTURED = "structured"


class SizeUnit(str, Enum):
    BYTES = "bytes"
    CHARS = "chars"
    TOKENS = "tokens"
    WORDS = "words"
    LINES = "lines"


class DeliveryUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ProcessingTimeUnit(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"


class PricingUnit(str, Enum):
    PER_TASK = "per_task"
    PER_WORD = "per_word"
    PER_TOKEN = "per_token"
    PER_MINUTE = "per_minute"
    PER_IMAGE = "per_image"
    PER_REQUEST = "per_request"
    FLAT = "flat"


# =============================================================================
# Intent contract pieces
# =============================================================================

class Size(ContractModel):
    value: float
    unit: SizeUnit


class InputAttachment(ContractModel):
    type: InputType
    mime_type: Optional[str] = None
    name: str = Field(..., min_length=1)
    content: str


class InputSpec(ContractModel):
    """What the requester provides."""
    type: InputType
    mime_type: Optional[str] = None
    language: Optional[str] = None
    locale: Optional[str] = None
    size: Optional[Size] = None
    content: str
    attachments: Optional[List[InputAttachment]] = None


class OutputValidation(ContractModel):
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    required_fields: Optional[List[str]] = None


class OutputSpec(ContractModel):
    """What the requester expects back."""
    format: OutputFormat
    mime_type: Optional[str] = None
    language: Optional[str] = None
    locale: Optional[str] = None
    json_schema: Optional[Dict[str, Any]] = Field(default=None, alias="schema")
    description: Optional[str] = None
    example: Optional[str] = None
    validation: Optional[OutputValidation] = None


class RequiredCapabilities(ContractModel):
    category: str = Field(..., min_length=1)
    skills: Optional[List[str]] = None
    min_rating: Optional[float] = None
    min_completed_jobs: Optional[int] = None


class ContextExample(ContractModel):
    input: str
    output: str
    quality: Literal["good", "bad"]


class IntentContext(ContractModel):
    references: Optional[List[str]] = None
    conventions: Optional[str] = None
    examples: Optional[List[ContextExample]] = None


class LegacyIntentContract(ContractModel):
    """Schema 1.0: a category and an opaque requirements object."""
    schema_version: Literal["1.0"] = "1.0"
    category: str = Field(..., min_length=1)
    requirements: Dict[str, Any] = Field(default_factory=dict)

    @property
    def requires(self) -> RequiredCapabilities:
        return RequiredCapabilities(category=self.category)


class ExplicitIntentContract(ContractModel):
    """Schema 2.0: explicit input, output and capability requirements."""
    schema_version: Literal["2.0"] = "2.0"
    input: InputSpec
    output: OutputSpec
    requires: RequiredCapabilities
    argument_hint: Optional[str] = None
    context: Optional[IntentContext] = None

    @property
    def category(self) -> str:
        return self.requires.category


IntentContract = Annotated[
    Union[LegacyIntentContract, ExplicitIntentContract],
    Field(discriminator="schema_version"),
]


class Stake(IntentCastModel):
    """Requester's stake reference; verified only after a ledger check."""
    tx_hash: str
    amount: Decimal
    verified: bool = False


class Intent(IntentCastModel):
    """A requester's work request."""
    id: str = Field(default_factory=new_intent_id)
    title: Optional[str] = None
    description: Optional[str] = None
    contract: IntentContract
    tags: List[str] = Field(default_factory=list)
    urgency: UrgencyLevel = UrgencyLevel.NORMAL
    max_price_usdc: Decimal
    stake: Stake
    deadline: datetime
    requester_wallet: str
    status: IntentStatus = IntentStatus.ACTIVE
    accepted_offer_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def accepted_offer_matches_status(self) -> "Intent":
        self.check_invariants()
        return self

    def check_invariants(self) -> None:
        if self.status in ACCEPTED_STATUSES and not self.accepted_offer_id:
            raise ValueError(f"intent in status {self.status.value} requires acceptedOfferId")
        if self.status in UNACCEPTED_STATUSES and self.accepted_offer_id:
            raise ValueError(f"intent in status {self.status.value} cannot carry acceptedOfferId")

    def with_changes(self, **changes: Any) -> "Intent":
        """Copy with top-level changes applied, bumping ``updated_at``."""
        changes.setdefault("updated_at", utc_now())
        updated = self.model_copy(update=changes)
        updated.check_invariants()
        return updated

    @property
    def category(self) -> str:
        return self.contract.category

    @property
    def schema_version(self) -> str:
        return self.contract.schema_version

    @property
    def requires(self) -> RequiredCapabilities:
        return self.contract.requires

    @property
    def stake_verified(self) -> bool:
        return self.stake.verified

    def is_past_deadline(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.deadline

    @staticmethod
    def deadline_from_hours(hours: int, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()) + timedelta(hours=hours)


# =============================================================================
# Offer
# =============================================================================

class DeliveryEstimate(ContractModel):
    value: float
    unit: DeliveryUnit


class DeliveryGuarantees(ContractModel):
    accuracy: Optional[float] = Field(default=None, ge=0, le=1)
    revisions: Optional[int] = Field(default=None, ge=0)


class DeliveryCommitment(ContractModel):
    output_format: OutputFormat
    output_mime_type: Optional[str] = None
    estimated_delivery: DeliveryEstimate
    guarantees: Optional[DeliveryGuarantees] = None
    limitations: Optional[List[str]] = None


class PriceBreakdown(ContractModel):
    base_price: Decimal
    rush_fee: Optional[Decimal] = None
    volume_discount: Optional[Decimal] = None
    final_price: Decimal


class LegacyOfferTerms(ContractModel):
    """Schema 1.0: a delivery estimate in minutes and a free-text message."""
    schema_version: Literal["1.0"] = "1.0"
    estimated_delivery_minutes: Optional[int] = None
    message: Optional[str] = None


class ExplicitOfferTerms(ContractModel):
    """Schema 2.0: an explicit delivery commitment."""
    schema_version: Literal["2.0"] = "2.0"
    commitment: DeliveryCommitment
    price_breakdown: Optional[PriceBreakdown] = None
    qualifications: Optional[str] = None


OfferTerms = Annotated[
    Union[LegacyOfferTerms, ExplicitOfferTerms],
    Field(discriminator="schema_version"),
]


class Offer(IntentCastModel):
    """A provider's bid against one intent."""
    id: str = Field(default_factory=new_offer_id)
    intent_id: str
    provider_id: str
    price_usdc: Decimal
    terms: OfferTerms = Field(default_factory=LegacyOfferTerms)
    status: OfferStatus = OfferStatus.PENDING
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("price_usdc")
    @classmethod
    def positive_price(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("price must be positive")
        return v

    def with_changes(self, **changes: Any) -> "Offer":
        changes.setdefault("updated_at", utc_now())
        return self.model_copy(update=changes)

    @property
    def schema_version(self) -> str:
        return self.terms.schema_version


# =============================================================================
# Provider
# =============================================================================

class ProcessingTime(ContractModel):
    value: float
    unit: ProcessingTimeUnit


class CapabilityGuarantees(ContractModel):
    accuracy: Optional[float] = Field(default=None, ge=0, le=1)
    revisions: Optional[int] = Field(default=None, ge=0)
    response_time_minutes: Optional[int] = Field(default=None, gt=0)


class CapabilityDeclaration(ContractModel):
    category: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    accepts_input_types: List[InputType] = Field(..., min_length=1)
    accepts_mime_types: Optional[List[str]] = None
    accepts_languages: Optional[List[str]] = None
    accepts_locales: Optional[List[str]] = None
    max_input_size: Optional[Size] = None
    produces_output_formats: List[OutputFormat] = Field(..., min_length=1)
    produces_mime_types: Optional[List[str]] = None
    produces_languages: Optional[List[str]] = None
    produces_locales: Optional[List[str]] = None
    avg_processing_time: Optional[ProcessingTime] = None
    guarantees: Optional[CapabilityGuarantees] = None


class VolumeDiscount(ContractModel):
    min_units: int = Field(..., gt=0)
    discount_percent: float = Field(..., ge=0, le=100)


class PricingDeclaration(ContractModel):
    category: str = Field(..., min_length=1)
    base_price: Decimal
    unit: PricingUnit
    minimum_charge: Optional[Decimal] = None
    maximum_charge: Optional[Decimal] = None
    rush_multiplier: Optional[float] = None
    volume_discounts: Optional[List[VolumeDiscount]] = None


def _unique(values: List[str]) -> List[str]:
    seen: list[str] = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return seen


class LegacyProviderProfile(ContractModel):
    """Schema 1.0: category strings and a category -> price map."""
    schema_version: Literal["1.0"] = "1.0"
    capabilities: List[str] = Field(..., min_length=1)
    pricing: Dict[str, Decimal] = Field(default_factory=dict)

    @property
    def categories(self) -> List[str]:
        return _unique(self.capabilities)

    def price_for(self, category: str) -> Optional[Decimal]:
        if category in self.pricing:
            return self.pricing[category]
        wanted = category.lower()
        for key, price in self.pricing.items():
            if key.lower() == wanted:
                return price
        return None


class ExplicitProviderProfile(ContractModel):
    """Schema 2.0: detailed capability and pricing declarations."""
    schema_version: Literal["2.0"] = "2.0"
    capabilities: List[CapabilityDeclaration] = Field(..., min_length=1)
    pricing: List[PricingDeclaration] = Field(..., min_length=1)

    @property
    def categories(self) -> List[str]:
        return _unique([c.category for c in self.capabilities])

    def price_for(self, category: str) -> Optional[Decimal]:
        wanted = category.lower()
        for declaration in self.pricing:
            if declaration.category.lower() == wanted:
                return declaration.base_price
        return None


ProviderProfile = Annotated[
    Union[LegacyProviderProfile, ExplicitProviderProfile],
    Field(discriminator="schema_version"),
]


class X402Declaration(ContractModel):
    """How a provider's fulfilment endpoint expects to be paid."""
    network: str = "eip155:84532"
    scheme: str = "exact"
    pay_to: Optional[str] = None
    price: Optional[str] = None


class Provider(IntentCastModel):
    """A registered service agent."""
    id: str = Field(default_factory=new_provider_id)
    agent_id: str
    wallet: str
    name: Optional[str] = None
    description: Optional[str] = None
    argument_hint: Optional[str] = None
    avatar_url: Optional[str] = None
    profile: ProviderProfile
    tags: Optional[List[str]] = None
    languages: Optional[List[str]] = None
    certifications: Optional[List[str]] = None
    website_url: Optional[str] = None
    api_endpoint: Optional[str] = None
    x402: Optional[X402Declaration] = None
    status: ProviderStatus = ProviderStatus.ONLINE
    completed_jobs: int = 0
    rating: Optional[float] = None
    rating_count: int = 0
    registered_at: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)

    def with_changes(self, **changes: Any) -> "Provider":
        return self.model_copy(update=changes)

    @property
    def categories(self) -> List[str]:
        return self.profile.categories

    @property
    def schema_version(self) -> str:
        return self.profile.schema_version

    def price_for(self, category: str) -> Optional[Decimal]:
        return self.profile.price_for(category)

    def summary(self, include_wallet: bool = False) -> dict[str, Any]:
        """Compact provider view attached to offers."""
        data: dict[str, Any] = {
            "id": self.id,
            "agentId": self.agent_id,
            "name": self.name,
            "categories": self.categories,
            "rating": self.rating,
        }
        if include_wallet:
            data["wallet"] = self.wallet
        return data


__all__ = [
    "utc_now",
    "new_intent_id",
    "new_offer_id",
    "new_provider_id",
    "IntentCastModel",
    "IntentStatus",
    "ACCEPTED_STATUSES",
    "OfferStatus",
    "ProviderStatus",
    "UrgencyLevel",
    "InputType",
    "OutputFormat",
    "SizeUnit",
    "DeliveryUnit",
    "PricingUnit",
    "InputSpec",
    "OutputSpec",
    "RequiredCapabilities",
    "IntentContext",
    "LegacyIntentContract",
    "ExplicitIntentContract",
    "IntentContract",
    "Stake",
    "Intent",
    "DeliveryCommitment",
    "PriceBreakdown",
    "LegacyOfferTerms",
    "ExplicitOfferTerms",
    "OfferTerms",
    "Offer",
    "CapabilityDeclaration",
    "PricingDeclaration",
    "LegacyProviderProfile",
    "ExplicitProviderProfile",
    "ProviderProfile",
    "X402Declaration",
    "Provider",
]
