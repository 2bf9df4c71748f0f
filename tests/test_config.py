"""Tests for settings, the store factory and small protocol helpers."""
from __future__ import annotations

import pytest

from intentcast_core.config import IntentCastSettings
from intentcast_core.store import InMemoryRecordStore, create_store
from intentcast_core.store.sql import SqlRecordStore
from intentcast_protocol.fulfillment import provider_fulfill_url, provider_network
from intentcast_protocol.settlement import OnChainSettler, X402Settlement, X402Settler, X402SettlementStatus
from intentcast_protocol.x402 import ExactAuthorization, PaymentPayload, PaymentRequirements

from marketplace_helpers import PROVIDER_WALLET, make_provider


class TestSettings:
    def test_defaults(self):
        settings = IntentCastSettings()

        assert settings.api_prefix == "/api/v1"
        assert settings.ledger.chain_id == 84532
        assert settings.x402_network == "eip155:84532"
        assert not settings.uses_durable_store

    @pytest.mark.parametrize("url,expected", [
        ("postgres://u:p@db/ic", "postgresql+asyncpg://u:p@db/ic"),
        ("postgresql://u:p@db/ic", "postgresql+asyncpg://u:p@db/ic"),
        ("sqlite:///ic.db", "sqlite+aiosqlite:///ic.db"),
    ])
    def test_database_url_driver(self, url, expected):
        assert IntentCastSettings(database_url=url).database_url == expected

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("INTENTCAST_ENVIRONMENT", "prod")
        monkeypatch.setenv("INTENTCAST_LEDGER__CHAIN_ID", "8453")
        monkeypatch.setenv("SERVICE_PRIVATE_KEY", "0x" + "44" * 32)

        settings = IntentCastSettings()

        assert settings.is_production
        assert settings.ledger.chain_id == 8453
        assert settings.service_wallet_private_key == "0x" + "44" * 32

    def test_allowed_origins(self):
        settings = IntentCastSettings(allowed_origins="https://a.test, https://b.test")

        assert settings.allowed_origins_list == ["https://a.test", "https://b.test"]


class TestStoreFactory:
    def test_memory_by_default(self):
        assert isinstance(create_store(IntentCastSettings()), InMemoryRecordStore)
        assert isinstance(create_store(IntentCastSettings(database_url="memory://")), InMemoryRecordStore)

    def test_sql_when_configured(self, tmp_path):
        store = create_store(IntentCastSettings(database_url=f"sqlite:///{tmp_path / 'ic.db'}"))

        assert isinstance(store, SqlRecordStore)
        assert store.backend == "sql"


class TestFulfillmentHelpers:
    @pytest.mark.parametrize("endpoint,expected", [
        ("https://agent.test", "https://agent.test/fulfill"),
        ("https://agent.test/", "https://agent.test/fulfill"),
        ("https://agent.test/fulfill", "https://agent.test/fulfill"),
        (None, ""),
    ])
    def test_fulfill_url(self, endpoint, expected):
        assert provider_fulfill_url(endpoint) == expected

    def test_network_defaults_when_undeclared(self):
        assert provider_network(make_provider(x402=None)) == "eip155:84532"


class _FailingSubmitter:
    async def transfer_with_authorization(self, payload, requirements):
        raise RuntimeError("node unreachable")


class TestSettlement:
    @pytest.mark.asyncio
    async def test_settle_requires_verification(self):
        x402 = X402Settler()
        requirements = PaymentRequirements(
            network="base-sepolia",
            max_amount_required="10000",
            resource="/fulfill",
            pay_to=PROVIDER_WALLET,
            asset="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        )
        payload = PaymentPayload(
            network="base-sepolia",
            signature="0x" + "00" * 65,
            authorization=ExactAuthorization(
                from_address=PROVIDER_WALLET,
                to_address=PROVIDER_WALLET,
                value="10000",
                valid_after="0",
                valid_before="9999999999",
                nonce="0x" + "01" * 32,
            ),
        )

        settlement = await x402.verify(payload, requirements)

        assert settlement.status == X402SettlementStatus.FAILED
        assert settlement.error == "x402_signature_invalid"
        with pytest.raises(ValueError):
            await x402.settle(settlement)
        assert (await x402.check_settlement("0x" + "01" * 32)) is settlement

    @pytest.mark.asyncio
    async def test_on_chain_failure_marks_settlement_failed(self):
        x402 = X402Settler(settler=OnChainSettler(_FailingSubmitter()))
        requirements = PaymentRequirements(
            network="base-sepolia",
            max_amount_required="1",
            resource="/fulfill",
            pay_to=PROVIDER_WALLET,
            asset="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        )
        payload = PaymentPayload(
            network="base-sepolia",
            signature="0x",
            authorization=ExactAuthorization(PROVIDER_WALLET, PROVIDER_WALLET, "1", "0", "1", "0x01"),
        )
        settlement = await x402.settle(X402Settlement(
            payment_id="p1",
            status=X402SettlementStatus.VERIFIED,
            payload=payload,
            requirements=requirements,
        ))

        assert settlement.status == X402SettlementStatus.FAILED
        assert "node unreachable" in settlement.error
