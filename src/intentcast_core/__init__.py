"""IntentCast core: domain models, record stores, matching and lifecycle."""

__version__ = "0.1.0"

from .config import IntentCastSettings, LedgerConfig, load_settings
from .exceptions import (
    AuthenticationError,
    ConflictError,
    IntentCastException,
    NotFoundError,
    ValidationError,
)
from .lifecycle import FulfillmentTarget, LifecycleController, PaymentRecord
from .matching import MatchingEngine, score_match
from .models import Intent, IntentStatus, Offer, OfferStatus, Provider, ProviderStatus
from .store import InMemoryRecordStore, RecordStore, create_store

__all__ = [
    "__version__",
    "IntentCastSettings",
    "LedgerConfig",
    "load_settings",
    "IntentCastException",
    "AuthenticationError",
    "ConflictError",
    "NotFoundError",
    "ValidationError",
    "LifecycleController",
    "FulfillmentTarget",
    "PaymentRecord",
    "MatchingEngine",
    "score_match",
    "Intent",
    "IntentStatus",
    "Offer",
    "OfferStatus",
    "Provider",
    "ProviderStatus",
    "InMemoryRecordStore",
    "RecordStore",
    "create_store",
]
