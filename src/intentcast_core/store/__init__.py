"""Record Store backends and the factory that selects one from settings."""
from __future__ import annotations

from typing import TYPE_CHECKING

from .base import AcceptedOffer, ProviderRegistration, RecordStore
from .memory import InMemoryRecordStore

if TYPE_CHECKING:
    from ..config import IntentCastSettings


def create_store(settings: "IntentCastSettings") -> RecordStore:
    """Build the store named by ``settings.database_url`` (memory when unset)."""
    if not settings.uses_durable_store:
        return InMemoryRecordStore()
    # Imported lazily so the volatile store works without a database driver.
    from .sql import SqlRecordStore

    return SqlRecordStore(settings.database_url)


__all__ = [
    "AcceptedOffer",
    "InMemoryRecordStore",
    "ProviderRegistration",
    "RecordStore",
    "create_store",
]
