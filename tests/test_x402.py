"""Tests for the x402 wire format."""
from __future__ import annotations

from decimal import Decimal

import pytest

from intentcast_protocol.x402 import (
    X402_PAYMENT_RESPONSE_HEADER,
    X402_PAYMENT_SIGNATURE_HEADER,
    X402_V1_PAYMENT_HEADER,
    X402_V1_PAYMENT_RESPONSE_HEADER,
    ExactAuthorization,
    PaymentPayload,
    PaymentRequired,
    PaymentRequirements,
    SettlementResponse,
    X402HeaderBuilder,
    chain_id_for_network,
    decode_header,
    encode_header,
    find_payment_header,
    from_atomic_units,
    networks_match,
    parse_price,
    to_atomic_units,
    to_legacy_network,
    validate_x402_version,
)


def _requirements(**overrides) -> PaymentRequirements:
    data = {
        "network": "base-sepolia",
        "max_amount_required": "10000",
        "resource": "/fulfill",
        "pay_to": "0x000000000000000000000000000000000000dEaD",
        "asset": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    }
    data.update(overrides)
    return PaymentRequirements(**data)


def _payload(version: int = 1) -> PaymentPayload:
    return PaymentPayload(
        network="base-sepolia",
        signature="0x" + "ab" * 65,
        authorization=ExactAuthorization(
            from_address="0x1111111111111111111111111111111111111111",
            to_address="0x000000000000000000000000000000000000dEaD",
            value="10000",
            valid_after="0",
            valid_before="9999999999",
            nonce="0x" + "00" * 32,
        ),
        x402_version=version,
    )


class TestAmounts:
    @pytest.mark.parametrize("price,expected", [
        ("$0.01", Decimal("0.01")),
        ("0.50", Decimal("0.50")),
        (" $ 2 ", Decimal("2")),
        (1.5, Decimal("1.5")),
    ])
    def test_parse_price(self, price, expected):
        assert parse_price(price) == expected

    @pytest.mark.parametrize("price", ["free", "$0", "-1"])
    def test_parse_price_rejects(self, price):
        with pytest.raises(ValueError):
            parse_price(price)

    def test_atomic_units_truncate(self):
        assert to_atomic_units(Decimal("0.01")) == 10000
        assert to_atomic_units(Decimal("1.2345679")) == 1234567
        assert from_atomic_units("10000") == Decimal("0.01")


class TestNetworks:
    def test_legacy_and_caip2_names_match(self):
        assert networks_match("base-sepolia", "eip155:84532")
        assert not networks_match("base", "eip155:84532")
        assert to_legacy_network("eip155:8453") == "base"

    def test_chain_ids(self):
        assert chain_id_for_network("base-sepolia") == 84532
        assert chain_id_for_network("eip155:8453") == 8453
        with pytest.raises(ValueError):
            chain_id_for_network("solana-devnet")


class TestHeaders:
    def test_decode_rejects_garbage(self):
        with pytest.raises(ValueError):
            decode_header("not base64 json!")
        with pytest.raises(ValueError):
            decode_header("WzFd")  # "[1]"

    def test_payment_header_name_follows_version(self):
        assert set(X402HeaderBuilder.build_payment_header(_payload(1))) == {X402_V1_PAYMENT_HEADER}
        assert set(X402HeaderBuilder.build_payment_header(_payload(2))) == {X402_PAYMENT_SIGNATURE_HEADER}

    def test_response_header_name_follows_version(self):
        receipt = SettlementResponse(success=True, network="base-sepolia", transaction="0xabc")

        assert set(X402HeaderBuilder.build_payment_response_header(receipt)) == {X402_V1_PAYMENT_RESPONSE_HEADER}
        assert set(X402HeaderBuilder.build_payment_response_header(receipt, 2)) == {X402_PAYMENT_RESPONSE_HEADER}

    def test_payment_header_parses_back(self):
        header = X402HeaderBuilder.build_payment_header(_payload())[X402_V1_PAYMENT_HEADER]

        parsed = X402HeaderBuilder.parse_payment_header(header)

        assert parsed.authorization.value == "10000"
        assert parsed.network == "base-sepolia"

    def test_payload_missing_fields(self):
        with pytest.raises(ValueError):
            X402HeaderBuilder.parse_payment_header(encode_header({"network": "base"}))

    def test_find_payment_header_prefers_v2(self):
        assert find_payment_header({X402_PAYMENT_SIGNATURE_HEADER: "v2", X402_V1_PAYMENT_HEADER: "v1"}) == "v2"
        assert find_payment_header({X402_V1_PAYMENT_HEADER: "v1"}) == "v1"
        assert find_payment_header({}) is None


class TestPaymentRequired:
    def test_v2_amount_field(self):
        required = PaymentRequired.from_dict({
            "x402Version": 2,
            "accepts": [{
                "scheme": "exact",
                "network": "eip155:84532",
                "amount": "2500",
                "payTo": "0x000000000000000000000000000000000000dEaD",
            }],
        })

        assert required.x402_version == 2
        assert required.accepts[0].max_amount_required == "2500"

    def test_empty_accepts(self):
        with pytest.raises(ValueError):
            PaymentRequired.from_dict({"accepts": []})

    def test_select_by_network(self):
        required = PaymentRequired(accepts=[_requirements(network="base"), _requirements()])

        assert required.select("eip155:84532").network == "base-sepolia"
        assert required.select("base").network == "base"
        assert required.select("eip155:1") is None

    def test_to_dict_shape(self):
        data = PaymentRequired(accepts=[_requirements()]).to_dict()

        assert data["x402Version"] == 1
        assert data["accepts"][0]["maxAmountRequired"] == "10000"
        assert data["accepts"][0]["extra"] == {"name": "USDC", "version": "2"}


class TestVersions:
    def test_supported(self):
        assert validate_x402_version(1) == (True, None)
        assert validate_x402_version("2") == (True, None)
        assert validate_x402_version(3) == (False, "x402_version_unsupported:3")
