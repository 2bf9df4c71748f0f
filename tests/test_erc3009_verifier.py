"""Tests for ERC-3009 authorizations and server-side payment verification."""
from __future__ import annotations

import pytest

from intentcast_protocol.erc3009 import (
    USDC_TRANSFER_WITH_AUTHORIZATION_SELECTOR,
    TokenDomain,
    build_authorization,
    encode_transfer_with_authorization,
    recover_authorization_signer,
    sign_authorization,
    split_signature,
    validate_authorization_timing,
)
from intentcast_protocol.verifier import PaymentVerifier, domain_for
from intentcast_protocol.x402 import ExactAuthorization, PaymentPayload, PaymentRequirements

from marketplace_helpers import PROVIDER_WALLET, REQUESTER_KEY, REQUESTER_WALLET

USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
NOW = 1_700_000_000


def _requirements(**overrides) -> PaymentRequirements:
    data = {
        "network": "base-sepolia",
        "max_amount_required": "10000",
        "resource": "/fulfill",
        "pay_to": PROVIDER_WALLET,
        "asset": USDC,
    }
    data.update(overrides)
    return PaymentRequirements(**data)


def _signed_payload(
    requirements: PaymentRequirements,
    value: int = 10000,
    to: str = PROVIDER_WALLET,
    network: str = "eip155:84532",
    nonce: str | None = None,
) -> PaymentPayload:
    auth = build_authorization(REQUESTER_WALLET, to, value, timeout_seconds=60, now=NOW, nonce=nonce)
    signature = sign_authorization(REQUESTER_KEY, auth, domain_for(requirements))
    return PaymentPayload(network=network, signature=signature, authorization=auth)


class TestAuthorization:
    def test_sign_and_recover(self):
        domain = TokenDomain(chain_id=84532, verifying_contract=USDC)
        auth = build_authorization(REQUESTER_WALLET, PROVIDER_WALLET, 500, now=NOW)

        signature = sign_authorization(REQUESTER_KEY, auth, domain)

        assert len(signature) == 2 + 65 * 2
        assert recover_authorization_signer(auth, signature, domain) == REQUESTER_WALLET

    def test_other_domain_recovers_other_signer(self):
        auth = build_authorization(REQUESTER_WALLET, PROVIDER_WALLET, 500, now=NOW)
        signature = sign_authorization(REQUESTER_KEY, auth, TokenDomain(chain_id=84532, verifying_contract=USDC))

        assert recover_authorization_signer(
            auth, signature, TokenDomain(chain_id=8453, verifying_contract=USDC)
        ) != REQUESTER_WALLET

    def test_timing_window(self):
        auth = build_authorization(REQUESTER_WALLET, PROVIDER_WALLET, 1, timeout_seconds=60, now=NOW)

        assert validate_authorization_timing(auth, now=NOW) == (True, None)
        assert validate_authorization_timing(auth, now=NOW + 60) == (False, "authorization_expired")
        assert validate_authorization_timing(auth, now=NOW - 601) == (False, "authorization_not_yet_valid")

    def test_inverted_window(self):
        auth = ExactAuthorization(
            from_address=REQUESTER_WALLET,
            to_address=PROVIDER_WALLET,
            value="1",
            valid_after="10",
            valid_before="10",
            nonce="0x" + "00" * 32,
        )

        assert validate_authorization_timing(auth, now=5) == (False, "valid_after_must_be_before_valid_before")

    def test_calldata_layout(self):
        auth = build_authorization(REQUESTER_WALLET, PROVIDER_WALLET, 500, now=NOW)
        signature = sign_authorization(REQUESTER_KEY, auth, TokenDomain(chain_id=84532, verifying_contract=USDC))

        calldata = encode_transfer_with_authorization(auth, signature)

        assert calldata.startswith(USDC_TRANSFER_WITH_AUTHORIZATION_SELECTOR)
        assert len(calldata) == 2 + 8 + 9 * 64

    def test_split_signature_rejects_short(self):
        with pytest.raises(ValueError):
            split_signature("0x" + "ab" * 64)


class TestPaymentVerifier:
    def test_accepts_valid_payment(self):
        requirements = _requirements()

        result = PaymentVerifier().verify(_signed_payload(requirements), requirements, now=NOW)

        assert result.accepted
        assert result.payer == REQUESTER_WALLET

    def test_overpayment_is_accepted(self):
        requirements = _requirements()

        assert PaymentVerifier().verify(_signed_payload(requirements, value=20000), requirements, now=NOW).accepted

    def test_replay_is_rejected(self):
        verifier = PaymentVerifier()
        requirements = _requirements()
        payload = _signed_payload(requirements)
        verifier.verify(payload, requirements, now=NOW)

        result = verifier.verify(payload, requirements, now=NOW)

        assert not result.accepted
        assert result.reason == "x402_nonce_reused"

    def test_rejected_payment_does_not_burn_nonce(self):
        verifier = PaymentVerifier()
        requirements = _requirements()
        payload = _signed_payload(requirements)

        assert verifier.verify(payload, requirements, now=NOW + 3600).reason == "x402_authorization_expired"
        assert verifier.verify(payload, requirements, now=NOW).accepted

    @pytest.mark.parametrize("kwargs,reason", [
        ({"value": 9999}, "x402_amount_insufficient"),
        ({"to": REQUESTER_WALLET}, "x402_payee_mismatch"),
        ({"network": "base"}, "x402_network_mismatch"),
    ])
    def test_rejections(self, kwargs, reason):
        requirements = _requirements()

        result = PaymentVerifier().verify(_signed_payload(requirements, **kwargs), requirements, now=NOW)

        assert not result.accepted
        assert result.reason == reason

    def test_tampered_value(self):
        requirements = _requirements()
        payload = _signed_payload(requirements)
        payload.authorization.value = "99999"

        result = PaymentVerifier().verify(payload, requirements, now=NOW)

        assert result.reason == "x402_signature_invalid"

    def test_unsupported_scheme(self):
        requirements = _requirements(scheme="upto")

        result = PaymentVerifier().verify(_signed_payload(_requirements()), requirements, now=NOW)

        assert result.reason == "x402_scheme_unsupported"
