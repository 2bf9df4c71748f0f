"""Server-side verification of x402 ``exact`` payments."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from .erc3009 import TokenDomain, recover_authorization_signer, validate_authorization_timing
from .replay import ReplayCache
from .x402 import (
    SCHEME_EXACT,
    PaymentPayload,
    PaymentRequirements,
    chain_id_for_network,
    networks_match,
    validate_x402_version,
)


@dataclass
class VerificationResult:
    accepted: bool
    reason: str | None = None
    payer: str | None = None


def domain_for(requirements: PaymentRequirements) -> TokenDomain:
    extra = requirements.extra or {}
    return TokenDomain(
        chain_id=chain_id_for_network(requirements.network),
        verifying_contract=requirements.asset,
        name=extra.get("name", "USDC"),
        version=extra.get("version", "2"),
    )


def _same_address(a: str, b: str) -> bool:
    try:
        return Web3.to_checksum_address(a) == Web3.to_checksum_address(b)
    except ValueError:
        return False


class PaymentVerifier:
    """Checks a payment payload against the requirements it claims to satisfy.

    Each authorization nonce is accepted once per payer.
    """

    def __init__(self, replay_cache: ReplayCache | None = None):
        self._replay_cache = replay_cache or ReplayCache()

    def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
        *,
        now: Optional[int] = None,
    ) -> VerificationResult:
        current = now if now is not None else int(time.time())
        auth = payload.authorization

        ok, reason = validate_x402_version(payload.x402_version)
        if not ok:
            return VerificationResult(False, reason)
        if payload.scheme != SCHEME_EXACT or requirements.scheme != SCHEME_EXACT:
            return VerificationResult(False, "x402_scheme_unsupported")
        if not networks_match(payload.network, requirements.network):
            return VerificationResult(False, "x402_network_mismatch")
        if not _same_address(auth.to_address, requirements.pay_to):
            return VerificationResult(False, "x402_payee_mismatch")

        try:
            paid = int(auth.value)
            required = int(requirements.max_amount_required)
        except ValueError:
            return VerificationResult(False, "x402_amount_malformed")
        if paid < required:
            return VerificationResult(False, "x402_amount_insufficient")

        try:
            ok, reason = validate_authorization_timing(auth, now=current)
        except ValueError:
            return VerificationResult(False, "x402_authorization_malformed")
        if not ok:
            return VerificationResult(False, f"x402_{reason}")

        try:
            signer = recover_authorization_signer(auth, payload.signature, domain_for(requirements))
        except Exception:  # noqa: BLE001
            return VerificationResult(False, "x402_signature_invalid")
        if not _same_address(signer, auth.from_address):
            return VerificationResult(False, "x402_signature_invalid")

        key = f"{auth.from_address.lower()}:{auth.nonce.lower()}"
        if not self._replay_cache.check_and_store(key, int(auth.valid_before), now=current):
            return VerificationResult(False, "x402_nonce_reused")

        return VerificationResult(True, payer=signer)


__all__ = ["PaymentVerifier", "VerificationResult", "domain_for"]
