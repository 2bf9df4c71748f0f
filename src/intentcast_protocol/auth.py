"""Wallet-signature authentication for mutating requests.

A caller signs ``"<app>:<nonce>:<METHOD>:<path>"`` (EIP-191 personal
message) with their wallet and sends the wallet address, the nonce and the
signature as headers. The path never includes the query string.

Check order: missing headers, then nonce reuse, then signature. A
(wallet, nonce) pair is consumed the moment its signature verifies and is
never released, so replaying it fails even when the first request later
failed for another reason. A bad signature does not consume the nonce.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from intentcast_core.exceptions import (
    AUTH_MESSAGE_FORMAT,
    InvalidSignatureError,
    MissingCredentialsError,
    NonceReusedError,
)

from .replay import ReplayCache

WALLET_HEADER = "x-wallet-address"
SIGNATURE_HEADER = "x-signature"
NONCE_HEADER = "x-nonce"

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def canonical_path(path: str) -> str:
    path = path.split("?", 1)[0] or "/"
    return path if path.startswith("/") else f"/{path}"


def build_auth_message(app: str, nonce: str, method: str, path: str) -> str:
    return f"{app}:{nonce}:{method.upper()}:{canonical_path(path)}"


def normalize_address(address: str) -> str:
    """Checksum an address; raises ValueError when it is not one."""
    return Web3.to_checksum_address(address)


def to_hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def sign_auth_message(private_key: str, app: str, nonce: str, method: str, path: str) -> dict[str, str]:
    """Produce the three authentication headers for a request."""
    account = Account.from_key(private_key)
    message = build_auth_message(app, nonce, method, path)
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return {
        WALLET_HEADER: account.address,
        SIGNATURE_HEADER: to_hex(signed.signature),
        NONCE_HEADER: nonce,
    }


@dataclass(frozen=True)
class AuthContext:
    """Recovered caller identity, attached to the request on success."""
    wallet_address: str
    nonce: str
    message: str


class NonceRegistry:
    """Consumed (wallet, nonce) pairs, shared across requests."""

    def __init__(self, cache: Optional[ReplayCache] = None):
        self._cache = cache or ReplayCache()

    @staticmethod
    def key(wallet: str, nonce: str) -> str:
        return f"{wallet.lower()}:{nonce}"

    def is_used(self, wallet: str, nonce: str) -> bool:
        return self._cache.contains(self.key(wallet, nonce))

    def consume(self, wallet: str, nonce: str) -> bool:
        """Atomically mark the pair used; False if another request already did."""
        return self._cache.check_and_store(self.key(wallet, nonce))

    def __len__(self) -> int:
        return len(self._cache)


class WalletAuthenticator:
    """Verifies signed request headers against a nonce registry."""

    def __init__(self, app_name: str = "IntentCast", nonces: Optional[NonceRegistry] = None):
        self.app_name = app_name
        self.nonces = nonces or NonceRegistry()

    @property
    def message_format(self) -> str:
        return AUTH_MESSAGE_FORMAT.replace("{app}", self.app_name)

    def message_for(self, nonce: str, method: str, path: str) -> str:
        return build_auth_message(self.app_name, nonce, method, path)

    def authenticate(
        self,
        wallet_address: Optional[str],
        signature: Optional[str],
        nonce: Optional[str],
        method: str,
        path: str,
    ) -> AuthContext:
        wallet_address = (wallet_address or "").strip()
        signature = (signature or "").strip()
        nonce = (nonce or "").strip()

        if not wallet_address or not signature or not nonce:
            raise MissingCredentialsError(
                "Missing auth headers",
                message_to_sign=self.message_for(nonce or "<nonce>", method, path),
                message_format=self.message_format,
            )

        message = self.message_for(nonce, method, path)

        if self.nonces.is_used(wallet_address, nonce):
            raise NonceReusedError(
                "Nonce already used",
                message_format=self.message_format,
                details={"hint": "Generate a fresh nonce for every mutation request"},
            )

        try:
            claimed = normalize_address(wallet_address)
            recovered = normalize_address(
                Account.recover_message(encode_defunct(text=message), signature=signature)
            )
        except Exception as e:
            raise InvalidSignatureError(
                "Invalid signature",
                message_to_sign=message,
                message_format=self.message_format,
                details={"reason": f"Signature verification failed: {e}"},
            ) from e

        if recovered != claimed:
            raise InvalidSignatureError(
                "Invalid signature",
                message_to_sign=message,
                message_format=self.message_format,
                details={"reason": "Signature does not match wallet address"},
            )

        if not self.nonces.consume(wallet_address, nonce):
            # Lost a race against an identical request.
            raise NonceReusedError("Nonce already used", message_format=self.message_format)

        return AuthContext(wallet_address=recovered, nonce=nonce, message=message)


__all__ = [
    "AuthContext",
    "MUTATING_METHODS",
    "NONCE_HEADER",
    "NonceRegistry",
    "SIGNATURE_HEADER",
    "WALLET_HEADER",
    "WalletAuthenticator",
    "build_auth_message",
    "canonical_path",
    "normalize_address",
    "sign_auth_message",
    "to_hex",
]
