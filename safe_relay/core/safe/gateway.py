"""
Chain access for Safe wallets.

``SafeGateway`` is the read/submit surface the orchestration layer depends
on; ``RpcSafeGateway`` implements it over a JSON-RPC endpoint.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ...config import settings
from ...providers.rpc import JsonRpcClient, RpcError
from ..errors import ExecutionFailed, UpstreamError
from . import codec
from .models import SafeTransaction, SignatureSet, TransactionResult, TxState
from .signers import Payer

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY_FEE_WEI = 1_000_000_000


class SafeGateway(ABC):
    """Read and submit operations against Safe contracts on one chain."""

    chain_id: int

    @abstractmethod
    async def get_owners(self, wallet: str) -> List[str]:
        ...

    @abstractmethod
    async def get_threshold(self, wallet: str) -> int:
        ...

    @abstractmethod
    async def get_nonce(self, wallet: str) -> int:
        ...

    @abstractmethod
    async def is_module_enabled(self, wallet: str, module: str) -> bool:
        """Raises ``UpstreamError`` when the chain cannot be queried."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        ...

    @abstractmethod
    async def exec_transaction(
        self,
        safe_tx: SafeTransaction,
        signatures: SignatureSet,
        payer: Payer,
    ) -> str:
        """Submit execTransaction paid by ``payer``; returns the tx hash."""

    @abstractmethod
    async def deploy_wallet(
        self,
        owners: List[str],
        threshold: int,
        payer: Payer,
        salt_nonce: int,
    ) -> Tuple[str, str]:
        """Deploy a Safe proxy paid by ``payer``; returns (wallet address, tx hash)."""

    @abstractmethod
    async def send_native(self, to: str, value: int, payer: Payer) -> str:
        """Plain value transfer from ``payer``; returns the tx hash."""

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout_seconds: float) -> TransactionResult:
        ...


class RpcSafeGateway(SafeGateway):
    """SafeGateway over a JSON-RPC node."""

    def __init__(
        self,
        rpc: JsonRpcClient,
        chain_id: int,
        *,
        gas_multiplier: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
        proxy_factory: Optional[str] = None,
        singleton: Optional[str] = None,
        fallback_handler: Optional[str] = None,
    ):
        self.rpc = rpc
        self.chain_id = chain_id
        self.gas_multiplier = gas_multiplier or settings.gas_multiplier
        self.poll_interval_seconds = poll_interval_seconds or settings.confirmation_poll_interval_seconds
        self.proxy_factory = proxy_factory or settings.safe_proxy_factory
        self.singleton = singleton or settings.safe_singleton
        self.fallback_handler = fallback_handler or settings.safe_fallback_handler

    async def _read(self, wallet: str, data: str, what: str) -> str:
        try:
            return await self.rpc.eth_call(wallet, data)
        except RpcError as e:
            raise UpstreamError(f"Failed to read {what} of {wallet}: {e}") from e

    async def get_owners(self, wallet: str) -> List[str]:
        result = await self._read(wallet, codec.GET_OWNERS, "owners")
        try:
            return codec.decode_address_array(result)
        except ValueError as e:
            raise UpstreamError(f"{wallet} did not return an owner list; is it a Safe?") from e

    async def get_threshold(self, wallet: str) -> int:
        result = await self._read(wallet, codec.GET_THRESHOLD, "threshold")
        try:
            return codec.decode_uint(result)
        except ValueError as e:
            raise UpstreamError(f"{wallet} did not return a threshold; is it a Safe?") from e

    async def get_nonce(self, wallet: str) -> int:
        result = await self._read(wallet, codec.NONCE, "nonce")
        try:
            return codec.decode_uint(result)
        except ValueError as e:
            raise UpstreamError(f"{wallet} did not return a nonce; is it a Safe?") from e

    async def is_module_enabled(self, wallet: str, module: str) -> bool:
        result = await self._read(wallet, codec.build_is_module_enabled_call(module), "module state")
        try:
            return codec.decode_bool(result)
        except ValueError as e:
            raise UpstreamError(f"{wallet} did not answer isModuleEnabled") from e

    async def get_balance(self, address: str) -> int:
        try:
            return await self.rpc.get_balance(address)
        except RpcError as e:
            raise UpstreamError(f"Failed to fetch balance of {address}: {e}") from e

    async def _fee_fields(self) -> Dict[str, Any]:
        """EIP-1559 fees when the node reports a base fee, legacy gasPrice otherwise."""
        try:
            history = await self.rpc.fee_history()
            base_fee = int(history["baseFeePerGas"][-1], 16)
            rewards = history.get("reward") or []
            priority_fee = int(rewards[0][0], 16) if rewards and rewards[0] else DEFAULT_PRIORITY_FEE_WEI
            return {
                "type": 2,
                "maxFeePerGas": base_fee * 2 + priority_fee,
                "maxPriorityFeePerGas": priority_fee,
            }
        except (RpcError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.debug(f"Fee history unavailable on chain {self.chain_id}, using gasPrice: {e}")
        try:
            return {"gasPrice": await self.rpc.gas_price()}
        except RpcError as e:
            raise UpstreamError(f"Failed to fetch gas price: {e}") from e

    async def _send(self, payer: Payer, to: str, data: str, value: int = 0) -> str:
        """Estimate, sign as ``payer`` and broadcast one transaction."""
        call_obj: Dict[str, Any] = {"from": payer.address, "to": to, "data": data}
        if value:
            call_obj["value"] = hex(value)

        try:
            gas_limit = int(await self.rpc.estimate_gas(call_obj) * self.gas_multiplier)
        except RpcError as e:
            reason = codec.decode_revert_reason(e.data) or str(e)
            raise ExecutionFailed(
                f"Transaction would revert: {reason}",
                revert_reason=reason,
            ) from e

        try:
            nonce = await self.rpc.get_transaction_count(payer.address)
        except RpcError as e:
            raise UpstreamError(f"Failed to fetch payer nonce: {e}") from e

        tx: Dict[str, Any] = {
            "chainId": self.chain_id,
            "to": to,
            "data": data,
            "value": value,
            "nonce": nonce,
            "gas": gas_limit,
        }
        tx.update(await self._fee_fields())
        raw_tx = payer.sign_transaction(tx)

        try:
            return await self.rpc.send_raw_transaction(raw_tx)
        except RpcError as e:
            reason = codec.decode_revert_reason(e.data)
            raise ExecutionFailed(f"Failed to submit transaction: {e}", revert_reason=reason) from e

    async def exec_transaction(
        self,
        safe_tx: SafeTransaction,
        signatures: SignatureSet,
        payer: Payer,
    ) -> str:
        wallet = safe_tx.intent.wallet
        data = codec.build_exec_transaction_call(safe_tx, signatures.packed())
        tx_hash = await self._send(payer, wallet, data)
        logger.info(f"Submitted execTransaction for {wallet} on chain {self.chain_id}: {tx_hash}")
        return tx_hash

    async def deploy_wallet(
        self,
        owners: List[str],
        threshold: int,
        payer: Payer,
        salt_nonce: int,
    ) -> Tuple[str, str]:
        initializer = codec.build_setup_call(owners, threshold, self.fallback_handler)
        data = codec.build_create_proxy_call(self.singleton, initializer, salt_nonce)

        # The factory returns the proxy address; a dry run yields it up front.
        try:
            result = await self.rpc.eth_call(self.proxy_factory, data, from_address=payer.address)
        except RpcError as e:
            reason = codec.decode_revert_reason(e.data) or str(e)
            raise ExecutionFailed(f"Safe deployment would revert: {reason}", revert_reason=reason) from e
        if not result or len(codec._strip_0x(result)) < 64:
            raise UpstreamError(f"Proxy factory {self.proxy_factory} returned no address")
        wallet = codec.decode_address(codec._strip_0x(result)[:64])

        tx_hash = await self._send(payer, self.proxy_factory, data)
        logger.info(f"Submitted Safe deployment for {wallet} on chain {self.chain_id}: {tx_hash}")
        return wallet, tx_hash

    async def send_native(self, to: str, value: int, payer: Payer) -> str:
        tx_hash = await self._send(payer, to, "0x", value)
        logger.info(f"Sent {value} wei from {payer.address} to {to} on chain {self.chain_id}: {tx_hash}")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout_seconds: float) -> TransactionResult:
        result = TransactionResult(
            tx_hash=tx_hash,
            status=TxState.SUBMITTED,
            chain_id=self.chain_id,
            submitted_at=datetime.now(timezone.utc),
        )
        deadline = time.monotonic() + timeout_seconds

        while True:
            try:
                receipt = await self.rpc.get_transaction_receipt(tx_hash)
            except RpcError as e:
                logger.warning(f"Error checking receipt for {tx_hash}: {e}")
                receipt = None

            if receipt:
                result.block_number = int(receipt["blockNumber"], 16)
                result.gas_used = int(receipt.get("gasUsed", "0x0"), 16)
                if int(receipt.get("status", "0x1"), 16) == 0:
                    result.status = TxState.REVERTED
                    result.error = "Transaction reverted"
                    return result
                result.status = TxState.CONFIRMED
                result.confirmed_at = datetime.now(timezone.utc)
                return result

            if time.monotonic() >= deadline:
                result.status = TxState.REVERTED
                result.timed_out = True
                result.error = f"Confirmation timeout after {timeout_seconds}s"
                return result

            await asyncio.sleep(self.poll_interval_seconds)

    async def close(self) -> None:
        await self.rpc.close()


class GatewayFactory:
    """Builds and caches one gateway per chain id."""

    def __init__(self, resolver, gateway_cls=RpcSafeGateway):
        self._resolver = resolver
        self._gateway_cls = gateway_cls
        self._gateways: Dict[int, SafeGateway] = {}

    def supported_chain_ids(self) -> List[int]:
        return self._resolver.supported_chain_ids()

    def for_chain(self, chain_id: int) -> SafeGateway:
        gateway = self._gateways.get(chain_id)
        if gateway is None:
            url = self._resolver.resolve(chain_id)
            gateway = self._gateway_cls(JsonRpcClient(url), chain_id)
            self._gateways[chain_id] = gateway
        return gateway

    async def close(self) -> None:
        for gateway in self._gateways.values():
            close = getattr(gateway, "close", None)
            if close is not None:
                await close()
        self._gateways.clear()
