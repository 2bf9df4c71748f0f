"""Tests for the x402 paying client against the demo provider."""
from __future__ import annotations

import httpx
import pytest

from intentcast_api.demo_provider import create_demo_provider_app
from intentcast_protocol.client import X402PaymentClient, normalize_private_key
from intentcast_protocol.erc3009 import build_authorization, sign_authorization
from intentcast_protocol.verifier import domain_for
from intentcast_protocol.x402 import (
    X402_PAYMENT_REQUIRED_HEADER,
    PaymentPayload,
    X402HeaderBuilder,
    decode_header,
)

from marketplace_helpers import PROVIDER_WALLET, REQUESTER_KEY, REQUESTER_WALLET

PROVIDER_URL = "http://provider.test/fulfill"


def _provider_transport(**kwargs) -> tuple[httpx.ASGITransport, object]:
    app = create_demo_provider_app(PROVIDER_WALLET, **kwargs)
    return httpx.ASGITransport(app=app), app


class TestDemoProvider:
    @pytest.mark.asyncio
    async def test_unpaid_request_gets_402(self):
        transport, _ = _provider_transport()

        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.post(PROVIDER_URL, json={"intentId": "int_1"})

        assert response.status_code == 402
        body = response.json()
        assert body["x402Version"] == 1
        assert body["accepts"][0]["maxAmountRequired"] == "10000"
        assert body["accepts"][0]["payTo"] == PROVIDER_WALLET
        assert decode_header(response.headers[X402_PAYMENT_REQUIRED_HEADER]) == body

    @pytest.mark.asyncio
    async def test_replayed_payment_is_refused(self):
        transport, app = _provider_transport()
        requirements = app.state.requirements
        auth = build_authorization(REQUESTER_WALLET, PROVIDER_WALLET, int(requirements.max_amount_required))
        payload = PaymentPayload(
            network=requirements.network,
            signature=sign_authorization(REQUESTER_KEY, auth, domain_for(requirements)),
            authorization=auth,
        )
        headers = X402HeaderBuilder.build_payment_header(payload)

        async with httpx.AsyncClient(transport=transport) as client:
            first = await client.post(PROVIDER_URL, json={"intentId": "int_1"}, headers=headers)
            second = await client.post(PROVIDER_URL, json={"intentId": "int_1"}, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 402
        assert second.json()["error"] == "x402_nonce_reused"

    @pytest.mark.asyncio
    async def test_malformed_payment_header(self):
        transport, _ = _provider_transport()

        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.post(PROVIDER_URL, json={}, headers={"X-PAYMENT": "%%%"})

        assert response.status_code == 402


class TestX402PaymentClient:
    @pytest.mark.asyncio
    async def test_pays_and_returns_receipt(self):
        transport, app = _provider_transport()
        client = X402PaymentClient(REQUESTER_KEY, transport=transport)

        result = await client.call(PROVIDER_URL, body={"intentId": "int_1", "input": "hello world"})

        assert result.success, result.error
        assert result.status == 200
        assert result.data["result"] == 'Processed intent int_1: "hello world..."'
        assert result.payment_tx_hash.startswith("0x")
        assert len(result.payment_tx_hash) == 66

        (settlement,) = app.state.x402.store._settlements.values()
        assert settlement.payer == REQUESTER_WALLET
        assert settlement.tx_hash == result.payment_tx_hash

    @pytest.mark.asyncio
    async def test_v2_provider(self):
        transport, _ = _provider_transport(x402_version=2)

        result = await X402PaymentClient(REQUESTER_KEY, transport=transport).call(PROVIDER_URL, body={})

        assert result.success
        assert result.payment_tx_hash is not None

    @pytest.mark.asyncio
    async def test_refuses_price_above_maximum(self):
        transport, app = _provider_transport(price="$2.00")

        result = await X402PaymentClient(REQUESTER_KEY, transport=transport).call(
            PROVIDER_URL, body={}, max_amount=500000
        )

        assert not result.success
        assert result.error == "Payment required (2000000) exceeds maximum (500000)"
        assert result.status == 402
        assert len(app.state.x402.store._settlements) == 0

    @pytest.mark.asyncio
    async def test_no_option_for_network(self):
        transport, _ = _provider_transport()

        result = await X402PaymentClient(REQUESTER_KEY, transport=transport).call(
            PROVIDER_URL, body={}, network="base"
        )

        assert not result.success
        assert "No accepted payment option" in result.error

    @pytest.mark.asyncio
    async def test_invalid_key(self):
        result = await X402PaymentClient("0x1234").call(PROVIDER_URL)

        assert not result.success
        assert "Invalid private key length" in result.error

    @pytest.mark.asyncio
    async def test_unreachable_provider(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await X402PaymentClient(REQUESTER_KEY, transport=httpx.MockTransport(refuse)).call(PROVIDER_URL)

        assert not result.success
        assert result.error.startswith("Provider unreachable")

    @pytest.mark.asyncio
    async def test_unpaid_success_has_no_receipt(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True}))

        result = await X402PaymentClient(REQUESTER_KEY, transport=transport).call(PROVIDER_URL, body={})

        assert result.success
        assert result.data == {"ok": True}
        assert result.payment_tx_hash is None

    @pytest.mark.asyncio
    async def test_error_status_after_payment(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if "X-PAYMENT" not in request.headers:
                return httpx.Response(402, json={
                    "x402Version": 1,
                    "accepts": [{
                        "scheme": "exact",
                        "network": "base-sepolia",
                        "maxAmountRequired": "100",
                        "payTo": PROVIDER_WALLET,
                        "asset": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
                    }],
                })
            return httpx.Response(500, json={"error": "boom"})

        result = await X402PaymentClient(REQUESTER_KEY, transport=httpx.MockTransport(handler)).call(
            PROVIDER_URL, body={}
        )

        assert not result.success
        assert result.status == 500
        assert "boom" in result.error


class TestNormalizePrivateKey:
    def test_adds_prefix(self):
        assert normalize_private_key("ab" * 32) == "0x" + "ab" * 32

    def test_rejects_short(self):
        with pytest.raises(ValueError):
            normalize_private_key("0xabc")
