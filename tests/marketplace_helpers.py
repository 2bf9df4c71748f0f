"""Shared builders for marketplace tests."""
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Optional

from eth_account import Account

from intentcast_chain.ledger import TransferResult
from intentcast_core.exceptions import LedgerError
from intentcast_core.models import (
    ExplicitIntentContract,
    InputSpec,
    Intent,
    LegacyIntentContract,
    LegacyProviderProfile,
    Offer,
    OutputSpec,
    Provider,
    RequiredCapabilities,
    Stake,
    X402Declaration,
)
from intentcast_protocol.auth import sign_auth_message

REQUESTER_KEY = "0x" + "11" * 32
PROVIDER_KEY = "0x" + "22" * 32
OTHER_PROVIDER_KEY = "0x" + "33" * 32
SERVICE_KEY = "0x" + "44" * 32

REQUESTER_WALLET = Account.from_key(REQUESTER_KEY).address
PROVIDER_WALLET = Account.from_key(PROVIDER_KEY).address
OTHER_PROVIDER_WALLET = Account.from_key(OTHER_PROVIDER_KEY).address
SERVICE_WALLET = Account.from_key(SERVICE_KEY).address


def make_intent(
    category: str = "translation",
    max_price: str = "1.00",
    requester_wallet: str = REQUESTER_WALLET,
    stake_verified: bool = False,
    **overrides: Any,
) -> Intent:
    data: dict[str, Any] = {
        "title": "Translate a README",
        "contract": LegacyIntentContract(category=category),
        "max_price_usdc": Decimal(max_price),
        "stake": Stake(tx_hash="0xstake", amount=Decimal("0.10"), verified=stake_verified),
        "deadline": Intent.deadline_from_hours(24),
        "requester_wallet": requester_wallet,
    }
    data.update(overrides)
    return Intent(**data)


def make_explicit_intent(
    category: str = "code-review",
    max_price: str = "2.00",
    min_rating: Optional[float] = None,
    min_completed_jobs: Optional[int] = None,
) -> Intent:
    return Intent(
        title="Review a pull request",
        contract=ExplicitIntentContract(
            input=InputSpec(type="code", content="def f(): pass", language="python"),
            output=OutputSpec(format="markdown"),
            requires=RequiredCapabilities(
                category=category,
                min_rating=min_rating,
                min_completed_jobs=min_completed_jobs,
            ),
        ),
        max_price_usdc=Decimal(max_price),
        stake=Stake(tx_hash="0xstake", amount=Decimal("0.10")),
        deadline=Intent.deadline_from_hours(24),
        requester_wallet=REQUESTER_WALLET,
    )


def make_provider(
    agent_id: str = "agent-translator",
    wallet: str = PROVIDER_WALLET,
    capabilities: Optional[list[str]] = None,
    pricing: Optional[dict[str, str]] = None,
    **overrides: Any,
) -> Provider:
    capabilities = capabilities or ["translation"]
    pricing = pricing if pricing is not None else {"translation": "0.50"}
    data: dict[str, Any] = {
        "agent_id": agent_id,
        "wallet": wallet,
        "name": agent_id.replace("-", " ").title(),
        "profile": LegacyProviderProfile(
            capabilities=capabilities,
            pricing={k: Decimal(v) for k, v in pricing.items()},
        ),
        "api_endpoint": "http://provider.test",
        "x402": X402Declaration(network="eip155:84532", pay_to=wallet),
    }
    data.update(overrides)
    return Provider(**data)


def make_offer(intent_id: str, provider_id: str, price: str = "0.50", **overrides: Any) -> Offer:
    return Offer(intent_id=intent_id, provider_id=provider_id, price_usdc=Decimal(price), **overrides)


def signed_headers(private_key: str, method: str, path: str, app: str = "IntentCast") -> dict[str, str]:
    """Fresh wallet-auth headers for one request."""
    return sign_auth_message(private_key, app, uuid.uuid4().hex, method, path)


class FakeLedger:
    """In-process ledger with fixed balances."""

    def __init__(self, balances: Optional[dict[str, str]] = None):
        self.balances = {k.lower(): Decimal(v) for k, v in (balances or {}).items()}
        self.transfers: list[tuple[str, Decimal]] = []
        self.fail_with: Optional[str] = None
        self.unavailable = False

    async def verify_stake(self, wallet: str, min_amount: Decimal) -> bool:
        if self.unavailable:
            raise LedgerError("RPC unreachable")
        return self.balances.get(wallet.lower(), Decimal(0)) >= Decimal(min_amount)

    async def get_balance(self, address: str) -> Decimal:
        if self.unavailable:
            raise LedgerError("RPC unreachable")
        return self.balances.get(address.lower(), Decimal(0))

    async def execute_transfer(self, to: str, amount: Decimal, private_key: str) -> TransferResult:
        if self.fail_with:
            return TransferResult(success=False, error=self.fail_with)
        self.transfers.append((to, Decimal(amount)))
        return TransferResult(success=True, tx_hash="0x" + f"{len(self.transfers):064x}")

    def describe(self) -> dict[str, Any]:
        return {"rpc": "fake://ledger", "chainId": 84532}
