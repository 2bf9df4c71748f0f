"""x402 settlement: verification first, then a pluggable settler.

Implements:
- Settlement status tracking (VERIFIED -> SETTLING -> SETTLED)
- Store abstraction for settlement persistence
- Simulated and on-chain settlers
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from web3 import Web3

from .verifier import PaymentVerifier
from .x402 import PaymentPayload, PaymentRequirements, SettlementResponse

logger = logging.getLogger(__name__)


class X402SettlementStatus(Enum):
    VERIFIED = "verified"
    SETTLING = "settling"
    SETTLED = "settled"
    FAILED = "failed"


@dataclass(slots=True)
class X402Settlement:
    """Settlement tracking for one payment authorization."""
    payment_id: str
    status: X402SettlementStatus
    payload: PaymentPayload
    requirements: PaymentRequirements
    payer: str | None = None
    tx_hash: str | None = None
    settled_at: datetime | None = None
    error: str | None = None

    def to_response(self) -> SettlementResponse:
        return SettlementResponse(
            success=self.status == X402SettlementStatus.SETTLED,
            network=self.requirements.network,
            transaction=self.tx_hash or "",
            payer=self.payer or self.payload.authorization.from_address,
            error_reason=self.error,
        )


class X402SettlementStore(Protocol):
    async def save(self, settlement: X402Settlement) -> None: ...

    async def get(self, payment_id: str) -> X402Settlement | None: ...


class InMemorySettlementStore:
    def __init__(self):
        self._settlements: dict[str, X402Settlement] = {}

    async def save(self, settlement: X402Settlement) -> None:
        self._settlements[settlement.payment_id] = settlement

    async def get(self, payment_id: str) -> X402Settlement | None:
        return self._settlements.get(payment_id)


class Settler(Protocol):
    """Moves the authorized funds; returns the transaction hash."""

    async def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> str: ...


class SimulatedSettler:
    """Settles nothing on-chain; the transaction id is derived from the signature."""

    async def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> str:
        return "0x" + bytes(Web3.keccak(text=payload.signature)).hex()


class AuthorizationSubmitter(Protocol):
    async def transfer_with_authorization(self, payload: PaymentPayload, requirements: PaymentRequirements) -> str: ...


class OnChainSettler:
    """Submits ``transferWithAuthorization`` through the ledger client."""

    def __init__(self, ledger: AuthorizationSubmitter):
        self.ledger = ledger

    async def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> str:
        return await self.ledger.transfer_with_authorization(payload, requirements)


class X402Settler:
    """Manages x402 payment verification and settlement."""

    def __init__(
        self,
        verifier: PaymentVerifier | None = None,
        settler: Settler | None = None,
        store: X402SettlementStore | None = None,
    ):
        self.verifier = verifier or PaymentVerifier()
        self.settler = settler or SimulatedSettler()
        self.store = store or InMemorySettlementStore()

    async def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> X402Settlement:
        """Verify a payment against its requirements. Does NOT touch the blockchain."""
        result = self.verifier.verify(payload, requirements)
        settlement = X402Settlement(
            payment_id=payload.authorization.nonce,
            status=X402SettlementStatus.VERIFIED if result.accepted else X402SettlementStatus.FAILED,
            payload=payload,
            requirements=requirements,
            payer=result.payer,
            error=result.reason,
        )
        await self.store.save(settlement)
        return settlement

    async def settle(self, settlement: X402Settlement) -> X402Settlement:
        if settlement.status != X402SettlementStatus.VERIFIED:
            raise ValueError(
                f"cannot_settle: settlement must be VERIFIED, got {settlement.status.value}"
            )
        settlement.status = X402SettlementStatus.SETTLING
        await self.store.save(settlement)
        try:
            tx_hash = await self.settler.settle(settlement.payload, settlement.requirements)
        except Exception as exc:
            logger.warning("x402 settlement failed for %s: %s", settlement.payment_id, exc)
            settlement.status = X402SettlementStatus.FAILED
            settlement.error = f"x402_settlement_failed: {exc}"
        else:
            settlement.status = X402SettlementStatus.SETTLED
            settlement.tx_hash = tx_hash
            settlement.settled_at = datetime.now(timezone.utc)
        await self.store.save(settlement)
        return settlement

    async def check_settlement(self, payment_id: str) -> X402Settlement | None:
        return await self.store.get(payment_id)


__all__ = [
    "AuthorizationSubmitter",
    "InMemorySettlementStore",
    "OnChainSettler",
    "Settler",
    "SimulatedSettler",
    "X402Settlement",
    "X402SettlementStatus",
    "X402SettlementStore",
    "X402Settler",
]
