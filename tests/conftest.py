"""Pytest configuration and fixtures for IntentCast tests."""
from __future__ import annotations

import pytest

from intentcast_core.lifecycle import LifecycleController
from intentcast_core.store.memory import InMemoryRecordStore

from marketplace_helpers import SERVICE_KEY, SERVICE_WALLET, FakeLedger


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def controller(store, ledger) -> LifecycleController:
    return LifecycleController(
        store,
        ledger=ledger,
        service_wallet_address=SERVICE_WALLET,
        service_wallet_private_key=SERVICE_KEY,
    )
