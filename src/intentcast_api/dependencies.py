"""Request-scoped access to the services wired up in ``create_app``."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from intentcast_core.config import IntentCastSettings
from intentcast_core.lifecycle import LedgerService, LifecycleController
from intentcast_core.matching import MatchingEngine
from intentcast_core.store.base import RecordStore
from intentcast_protocol.auth import WalletAuthenticator
from intentcast_protocol.fulfillment import FulfillmentFlow


@dataclass
class ApiDependencies:
    """Everything the routers need, built once per application."""
    settings: IntentCastSettings
    store: RecordStore
    controller: LifecycleController
    matching: MatchingEngine
    authenticator: WalletAuthenticator
    fulfillment: FulfillmentFlow
    ledger: Optional[LedgerService] = None


def get_deps() -> ApiDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")
