"""USDC ledger operations on an EVM chain (Base Sepolia by default).

- ``get_balance``: ERC-20 ``balanceOf`` via ``eth_call``
- ``verify_stake``: balance >= minimum, failing closed on any error
- ``execute_transfer``: balance check, signed ERC-20 ``transfer``, wait for receipt
- ``verify_transfer``: receipt status plus a matching ``Transfer`` event
- ``transfer_with_authorization``: submit a payer-signed ERC-3009 authorization
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from eth_account import Account
from web3 import Web3

from intentcast_core.config import LedgerConfig
from intentcast_core.exceptions import LedgerError, TransactionFailedError
from intentcast_protocol.client import normalize_private_key
from intentcast_protocol.erc3009 import encode_transfer_with_authorization
from intentcast_protocol.x402 import PaymentPayload, PaymentRequirements, from_atomic_units, to_atomic_units

from .rpc_client import ChainRPCClient

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
BALANCE_OF_SELECTOR = "70a08231"
TRANSFER_SELECTOR = "a9059cbb"
GAS_LIMIT_BUFFER = 1.2


def encode_erc20_transfer(to_address: str, amount: int) -> bytes:
    """Encode ERC20 transfer function call."""
    # transfer(address,uint256) selector: 0xa9059cbb
    selector = bytes.fromhex(TRANSFER_SELECTOR)
    to_bytes = bytes.fromhex(to_address[2:].lower().zfill(64))
    amount_bytes = amount.to_bytes(32, "big")
    return selector + to_bytes + amount_bytes


def encode_balance_of(owner: str) -> str:
    return "0x" + BALANCE_OF_SELECTOR + owner[2:].lower().zfill(64)


def _topic_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


@dataclass
class TransferResult:
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TransferVerification:
    verified: bool
    actual_amount: Optional[Decimal] = None
    error: Optional[str] = None


class UsdcLedger:
    """Balance, transfer and verification operations for one USDC contract."""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        rpc: Optional[ChainRPCClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        submitter_private_key: str = "",
    ):
        self.config = config or LedgerConfig()
        self.rpc = rpc or ChainRPCClient(
            self.config.rpc_url,
            timeout=self.config.rpc_timeout_seconds,
            transport=transport,
        )
        self._submitter_private_key = submitter_private_key

    @property
    def usdc_address(self) -> str:
        return Web3.to_checksum_address(self.config.usdc_address)

    def describe(self) -> Dict[str, Any]:
        return {
            "rpc": self.config.rpc_url,
            "chainId": self.config.chain_id,
            "usdcContract": self.config.usdc_address,
        }

    async def get_balance_units(self, address: str) -> int:
        result = await self.rpc.eth_call({"to": self.usdc_address, "data": encode_balance_of(address)})
        return int(result, 16) if result and result != "0x" else 0

    async def get_balance(self, address: str) -> Decimal:
        """USDC balance as a decimal amount."""
        try:
            units = await self.get_balance_units(address)
        except Exception as e:
            raise LedgerError(f"Failed to get balance: {e}") from e
        return from_atomic_units(units, self.config.usdc_decimals)

    async def verify_stake(self, wallet: str, min_amount: Decimal) -> bool:
        """True iff ``wallet`` holds at least ``min_amount`` USDC; False on any error."""
        try:
            balance = await self.get_balance(wallet)
        except Exception as e:
            logger.warning("verify_stake failed closed for %s: %s", wallet, e)
            return False
        has_enough = balance >= Decimal(min_amount)
        logger.info("verify_stake: %s has %s USDC, needs %s -> %s", wallet, balance, min_amount, has_enough)
        return has_enough

    async def _wait_for_confirmation(self, tx_hash: str) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.confirmation_timeout_seconds
        while True:
            receipt = await self.rpc.get_transaction_receipt(tx_hash)
            if receipt:
                return receipt
            if loop.time() >= deadline:
                raise TimeoutError(
                    f"Transaction {tx_hash} not confirmed after {self.config.confirmation_timeout_seconds}s"
                )
            await asyncio.sleep(self.config.poll_interval_seconds)

    async def _send_contract_call(self, private_key: str, data: str) -> Dict[str, Any]:
        """Sign and broadcast a call to the USDC contract; returns the receipt."""
        sender = Account.from_key(private_key)
        call = {"from": sender.address, "to": self.usdc_address, "data": data}
        gas = int(await self.rpc.estimate_gas(call) * GAS_LIMIT_BUFFER)
        priority_fee = await self.rpc.get_max_priority_fee()
        base_fee = await self.rpc.get_base_fee()
        tx = {
            "type": 2,
            "chainId": self.config.chain_id,
            "nonce": await self.rpc.get_nonce(sender.address),
            "to": self.usdc_address,
            "value": 0,
            "data": data,
            "gas": gas,
            "maxPriorityFeePerGas": priority_fee,
            "maxFeePerGas": base_fee * 2 + priority_fee,
        }
        signed = Account.sign_transaction(tx, private_key)
        tx_hash = await self.rpc.send_raw_transaction(bytes(signed.raw_transaction).hex())
        logger.info("Transaction submitted: %s", tx_hash)
        receipt = await self._wait_for_confirmation(tx_hash)
        receipt.setdefault("transactionHash", tx_hash)
        return receipt

    async def execute_transfer(self, to: str, amount: Decimal, private_key: str) -> TransferResult:
        """Send ``amount`` USDC to ``to``; failures come back as a TransferResult."""
        try:
            key = normalize_private_key(private_key)
            sender = Account.from_key(key)
            units = to_atomic_units(Decimal(amount), self.config.usdc_decimals)

            balance_units = await self.get_balance_units(sender.address)
            if balance_units < units:
                have = from_atomic_units(balance_units, self.config.usdc_decimals)
                return TransferResult(success=False, error=f"Insufficient balance: have {have}, need {amount}")

            logger.info("execute_transfer: sending %s USDC to %s", amount, to)
            data = "0x" + encode_erc20_transfer(Web3.to_checksum_address(to), units).hex()
            receipt = await self._send_contract_call(key, data)
            if int(receipt.get("status", "0x0"), 16) != 1:
                return TransferResult(success=False, tx_hash=receipt["transactionHash"], error="Transaction reverted")
            return TransferResult(success=True, tx_hash=receipt["transactionHash"])
        except Exception as e:
            logger.error("execute_transfer error: %s", e)
            return TransferResult(success=False, error=str(e))

    async def verify_transfer(
        self,
        tx_hash: str,
        from_address: str,
        to_address: str,
        min_amount: Decimal,
    ) -> TransferVerification:
        """Look for a USDC ``Transfer`` event from -> to of at least ``min_amount``."""
        try:
            receipt = await self.rpc.get_transaction_receipt(tx_hash)
        except Exception as e:
            return TransferVerification(verified=False, error=str(e))
        if not receipt:
            return TransferVerification(verified=False, error="Transaction not found")
        if int(receipt.get("status", "0x0"), 16) != 1:
            return TransferVerification(verified=False, error="Transaction failed")

        usdc = self.config.usdc_address.lower()
        for log in receipt.get("logs", []):
            topics = log.get("topics") or []
            if (log.get("address") or "").lower() != usdc:
                continue
            if len(topics) != 3 or topics[0].lower() != TRANSFER_EVENT_TOPIC:
                continue
            amount = from_atomic_units(int(log.get("data") or "0x0", 16), self.config.usdc_decimals)
            if (
                _topic_address(topics[1]) == from_address.lower()
                and _topic_address(topics[2]) == to_address.lower()
                and amount >= Decimal(min_amount)
            ):
                logger.info("verify_transfer: confirmed %s USDC from %s to %s", amount, from_address, to_address)
                return TransferVerification(verified=True, actual_amount=amount)
        return TransferVerification(verified=False, error="No matching Transfer event found")

    async def transfer_with_authorization(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> str:
        """Submit an ERC-3009 authorization signed by the payer; returns the tx hash."""
        if not self._submitter_private_key:
            raise LedgerError("No submitter key configured for on-chain settlement")
        data = encode_transfer_with_authorization(payload.authorization, payload.signature)
        receipt = await self._send_contract_call(normalize_private_key(self._submitter_private_key), data)
        if int(receipt.get("status", "0x0"), 16) != 1:
            raise TransactionFailedError(
                "transferWithAuthorization reverted",
                tx_hash=receipt["transactionHash"],
                reason="Transaction reverted",
            )
        return receipt["transactionHash"]

    async def close(self) -> None:
        await self.rpc.close()


__all__ = [
    "TRANSFER_EVENT_TOPIC",
    "TransferResult",
    "TransferVerification",
    "UsdcLedger",
    "encode_balance_of",
    "encode_erc20_transfer",
]
