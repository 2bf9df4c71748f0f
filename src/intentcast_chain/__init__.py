"""Ledger client for USDC on EVM chains."""

from .ledger import TransferResult, TransferVerification, UsdcLedger, encode_erc20_transfer
from .rpc_client import ChainRPCClient

__all__ = [
    "ChainRPCClient",
    "TransferResult",
    "TransferVerification",
    "UsdcLedger",
    "encode_erc20_transfer",
]
