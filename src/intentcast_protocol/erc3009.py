"""ERC-3009 TransferWithAuthorization support for x402 payments.

ERC-3009 enables gas-free USDC transfers via meta-transactions with EIP-712
signatures. The payer signs; whoever settles submits the call.

Reference: https://eips.ethereum.org/EIPS/eip-3009
USDC Implementation: https://github.com/circlefin/stablecoin-evm
"""
from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Any, Optional

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from .x402 import ExactAuthorization

USDC_TRANSFER_WITH_AUTHORIZATION_SELECTOR = "0xe3ee160e"

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

TRANSFER_WITH_AUTHORIZATION_TYPE = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

# Clock skew tolerated on validAfter.
VALID_AFTER_SKEW_SECONDS = 600


@dataclass(slots=True)
class TokenDomain:
    """EIP-712 domain of the token contract (USDC on Base Sepolia by default)."""
    chain_id: int
    verifying_contract: str
    name: str = "USDC"
    version: str = "2"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": Web3.to_checksum_address(self.verifying_contract),
        }


def new_authorization_nonce() -> str:
    return "0x" + secrets.token_hex(32)


def _nonce_bytes(nonce: str) -> bytes:
    raw = bytes.fromhex(nonce[2:] if nonce.lower().startswith("0x") else nonce)
    if len(raw) > 32:
        raise ValueError(f"hex_too_long: expected max 32 bytes, got {len(raw)}")
    return raw.rjust(32, b"\x00")


def build_authorization(
    from_addr: str,
    to_addr: str,
    value: int,
    timeout_seconds: int = 60,
    now: Optional[int] = None,
    nonce: Optional[str] = None,
) -> ExactAuthorization:
    """Authorization valid from shortly before ``now`` until ``now + timeout_seconds``."""
    current = now if now is not None else int(time.time())
    return ExactAuthorization(
        from_address=Web3.to_checksum_address(from_addr),
        to_address=Web3.to_checksum_address(to_addr),
        value=str(value),
        valid_after=str(current - VALID_AFTER_SKEW_SECONDS),
        valid_before=str(current + timeout_seconds),
        nonce=nonce or new_authorization_nonce(),
    )


def build_typed_data(auth: ExactAuthorization, domain: TokenDomain) -> dict[str, Any]:
    """EIP-712 typed data for TransferWithAuthorization."""
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "TransferWithAuthorization": TRANSFER_WITH_AUTHORIZATION_TYPE,
        },
        "primaryType": "TransferWithAuthorization",
        "domain": domain.to_dict(),
        "message": {
            "from": Web3.to_checksum_address(auth.from_address),
            "to": Web3.to_checksum_address(auth.to_address),
            "value": int(auth.value),
            "validAfter": int(auth.valid_after),
            "validBefore": int(auth.valid_before),
            "nonce": _nonce_bytes(auth.nonce),
        },
    }


def sign_authorization(private_key: str, auth: ExactAuthorization, domain: TokenDomain) -> str:
    """Sign the authorization; returns a 0x-prefixed 65-byte signature."""
    signed = Account.sign_typed_data(private_key, full_message=build_typed_data(auth, domain))
    return "0x" + bytes(signed.signature).hex()


def recover_authorization_signer(auth: ExactAuthorization, signature: str, domain: TokenDomain) -> str:
    message = encode_typed_data(full_message=build_typed_data(auth, domain))
    return Web3.to_checksum_address(Account.recover_message(message, signature=signature))


def validate_authorization_timing(
    auth: ExactAuthorization,
    now: Optional[int] = None,
) -> tuple[bool, Optional[str]]:
    """Check that authorization timing is valid.

    Returns:
        Tuple of (is_valid, error_reason).
    """
    current_time = now if now is not None else int(time.time())
    valid_after = int(auth.valid_after)
    valid_before = int(auth.valid_before)

    if valid_after >= valid_before:
        return False, "valid_after_must_be_before_valid_before"
    if current_time < valid_after:
        return False, "authorization_not_yet_valid"
    if current_time >= valid_before:
        return False, "authorization_expired"
    return True, None


def split_signature(signature: str) -> tuple[int, bytes, bytes]:
    raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    if len(raw) != 65:
        raise ValueError(f"invalid_signature_length: expected 65 bytes, got {len(raw)}")
    v = raw[64]
    if v < 27:
        v += 27
    return v, raw[:32], raw[32:64]


def encode_transfer_with_authorization(auth: ExactAuthorization, signature: str) -> str:
    """Calldata for ``transferWithAuthorization(from,to,value,validAfter,validBefore,nonce,v,r,s)``."""
    v, r, s = split_signature(signature)
    params = abi_encode(
        ["address", "address", "uint256", "uint256", "uint256", "bytes32", "uint8", "bytes32", "bytes32"],
        [
            Web3.to_checksum_address(auth.from_address),
            Web3.to_checksum_address(auth.to_address),
            int(auth.value),
            int(auth.valid_after),
            int(auth.valid_before),
            _nonce_bytes(auth.nonce),
            v,
            r,
            s,
        ],
    )
    return USDC_TRANSFER_WITH_AUTHORIZATION_SELECTOR + params.hex()


__all__ = [
    "USDC_TRANSFER_WITH_AUTHORIZATION_SELECTOR",
    "EIP712_DOMAIN_TYPE",
    "TRANSFER_WITH_AUTHORIZATION_TYPE",
    "TokenDomain",
    "build_authorization",
    "build_typed_data",
    "encode_transfer_with_authorization",
    "new_authorization_nonce",
    "recover_authorization_signer",
    "sign_authorization",
    "split_signature",
    "validate_authorization_timing",
]
