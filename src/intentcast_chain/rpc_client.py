"""Minimal async JSON-RPC client for an EVM node."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from intentcast_core.exceptions import RPCError

logger = logging.getLogger(__name__)


class ChainRPCClient:
    """JSON-RPC over HTTP against a single endpoint."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                transport=self._transport,
            )
        return self._http_client

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make a JSON-RPC call.

        Raises:
            RPCError: transport failure, HTTP error status, or a JSON-RPC error object
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        client = await self._get_client()
        try:
            response = await client.post(
                self._rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            logger.warning("RPC call %s to %s failed: %s", method, self._rpc_url, e)
            raise RPCError(f"RPC transport error: {e}", method=method) from e
        except ValueError as e:
            raise RPCError(f"RPC returned invalid JSON: {e}", method=method) from e

        if "error" in result:
            error = result["error"] or {}
            raise RPCError(
                error.get("message", str(error)),
                method=method,
                code=error.get("code"),
                details={"data": error.get("data")} if error.get("data") is not None else None,
            )
        return result.get("result")

    async def get_chain_id(self) -> int:
        return int(await self.call("eth_chainId"), 16)

    async def get_block_number(self) -> int:
        return int(await self.call("eth_blockNumber"), 16)

    async def get_max_priority_fee(self) -> int:
        """Get max priority fee for EIP-1559."""
        try:
            return int(await self.call("eth_maxPriorityFeePerGas"), 16)
        except RPCError:
            # Fallback for nodes that don't support this
            return 1_000_000_000  # 1 gwei

    async def get_base_fee(self) -> int:
        block = await self.call("eth_getBlockByNumber", ["latest", False])
        if block and "baseFeePerGas" in block:
            return int(block["baseFeePerGas"], 16)
        return int(await self.call("eth_gasPrice"), 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self.call("eth_estimateGas", [tx]), 16)

    async def get_nonce(self, address: str, block: str = "pending") -> int:
        return int(await self.call("eth_getTransactionCount", [address, block]), 16)

    async def send_raw_transaction(self, signed_tx: str) -> str:
        if not signed_tx.startswith("0x"):
            signed_tx = "0x" + signed_tx
        return await self.call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def eth_call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        return await self.call("eth_call", [tx, block])

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


__all__ = ["ChainRPCClient"]
