"""Async JSON-RPC client for EVM nodes."""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """JSON-RPC error object or transport failure."""

    def __init__(self, message: str, code: Optional[int] = None, data: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.data = data


class JsonRpcClient:
    """Thin wrapper around a single JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_s: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._client = client or httpx.AsyncClient(timeout=timeout_s or settings.rpc_timeout_seconds)
        self._ids = itertools.count(1)

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text or exc.response.reason_phrase
            raise RpcError(f"RPC HTTP {exc.response.status_code}: {detail}") from exc
        except (httpx.RequestError, ValueError) as exc:
            raise RpcError(f"RPC request to {method} failed: {exc}") from exc

        error = result.get("error")
        if error:
            data = error.get("data")
            if isinstance(data, dict):
                data = data.get("data")
            raise RpcError(
                error.get("message", "RPC error"),
                code=error.get("code"),
                data=data if isinstance(data, str) else None,
            )

        return result.get("result")

    async def eth_call(
        self, to: str, data: str, block: str = "latest", from_address: Optional[str] = None
    ) -> str:
        call_obj = {"to": to, "data": data}
        if from_address:
            call_obj["from"] = from_address
        return await self.call("eth_call", [call_obj, block])

    async def get_balance(self, address: str) -> int:
        return int(await self.call("eth_getBalance", [address, "latest"]), 16)

    async def get_transaction_count(self, address: str) -> int:
        return int(await self.call("eth_getTransactionCount", [address, "pending"]), 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self.call("eth_estimateGas", [tx]), 16)

    async def gas_price(self) -> int:
        return int(await self.call("eth_gasPrice"), 16)

    async def fee_history(self) -> Dict[str, Any]:
        return await self.call("eth_feeHistory", [1, "latest", [50]])

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.call("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def block_number(self) -> int:
        return int(await self.call("eth_blockNumber"), 16)

    async def close(self) -> None:
        await self._client.aclose()
