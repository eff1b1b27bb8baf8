"""
ABI and EIP-712 encoding for the Safe contract calls the relay makes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak, to_checksum_address

from ...services.address import ZERO_ADDRESS
from .models import SafeTransaction, TransactionIntent

ERROR_SELECTOR = "0x08c379a0"  # Error(string)
PANIC_SELECTOR = "0x4e487b71"  # Panic(uint256)


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def _encode_uint(value: int) -> str:
    if value < 0:
        raise ValueError("Value must be non-negative")
    return hex(value)[2:].rjust(64, "0")


def _encode_address(address: str) -> str:
    addr = _strip_0x(address).lower()
    if len(addr) != 40:
        raise ValueError(f"Invalid address length: {address}")
    return addr.rjust(64, "0")


def _encode_bytes(data: str) -> str:
    hex_data = _strip_0x(data)
    if len(hex_data) % 2 != 0:
        raise ValueError("Byte data must have an even-length hex string")
    data_len = len(hex_data) // 2
    padded_len = ((data_len + 31) // 32) * 32
    padding = "0" * ((padded_len - data_len) * 2)
    return _encode_uint(data_len) + hex_data + padding


def selector(signature: str) -> str:
    return "0x" + keccak(text=signature)[:4].hex()


GET_OWNERS = selector("getOwners()")
GET_THRESHOLD = selector("getThreshold()")
NONCE = selector("nonce()")
IS_MODULE_ENABLED = selector("isModuleEnabled(address)")
ADD_OWNER_WITH_THRESHOLD = selector("addOwnerWithThreshold(address,uint256)")
DISABLE_SESSION = selector("disableSession(address)")
SETUP = selector("setup(address[],uint256,address,bytes,address,address,uint256,address)")
CREATE_PROXY_WITH_NONCE = selector("createProxyWithNonce(address,bytes,uint256)")
ERC20_TRANSFER = selector("transfer(address,uint256)")
EXEC_TRANSACTION = selector(
    "execTransaction(address,uint256,bytes,uint8,uint256,uint256,uint256,address,address,bytes)"
)


# ---------------------------------------------------------------------------
# Call data builders
# ---------------------------------------------------------------------------


def build_is_module_enabled_call(module: str) -> str:
    return IS_MODULE_ENABLED + _encode_address(module)


def build_add_owner_call(owner: str, threshold: int) -> str:
    return ADD_OWNER_WITH_THRESHOLD + _encode_address(owner) + _encode_uint(threshold)


def build_disable_session_call(session_key: str) -> str:
    return DISABLE_SESSION + _encode_address(session_key)


def build_erc20_transfer_call(to: str, amount: int) -> str:
    return ERC20_TRANSFER + _encode_address(to) + _encode_uint(amount)


def build_setup_call(owners: List[str], threshold: int, fallback_handler: str) -> str:
    """
    Safe.setup initializer with no delegate call and no payment.

    Head holds eight slots; the owner array and the empty ``data`` bytes
    follow in the tail.
    """
    head_size = 8 * 32
    owners_tail = _encode_uint(len(owners)) + "".join(_encode_address(o) for o in owners)
    head = (
        _encode_uint(head_size)
        + _encode_uint(threshold)
        + _encode_address(ZERO_ADDRESS)
        + _encode_uint(head_size + len(owners_tail) // 2)
        + _encode_address(fallback_handler)
        + _encode_address(ZERO_ADDRESS)
        + _encode_uint(0)
        + _encode_address(ZERO_ADDRESS)
    )
    return SETUP + head + owners_tail + _encode_bytes("0x")


def build_create_proxy_call(singleton: str, initializer: str, salt_nonce: int) -> str:
    return (
        CREATE_PROXY_WITH_NONCE
        + _encode_address(singleton)
        + _encode_uint(3 * 32)
        + _encode_uint(salt_nonce)
        + _encode_bytes(initializer)
    )


def build_exec_transaction_call(safe_tx: SafeTransaction, packed_signatures: str) -> str:
    """
    Build calldata for Safe.execTransaction.

    Head holds ten 32-byte slots; ``data`` and ``signatures`` are dynamic and
    live in the tail.
    """
    intent = safe_tx.intent
    data_tail = _encode_bytes(intent.data or "0x")
    head_size = 10 * 32
    head = (
        _encode_address(intent.to)
        + _encode_uint(intent.value)
        + _encode_uint(head_size)
        + _encode_uint(int(intent.operation))
        + _encode_uint(safe_tx.safe_tx_gas)
        + _encode_uint(safe_tx.base_gas)
        + _encode_uint(safe_tx.gas_price)
        + _encode_address(safe_tx.gas_token)
        + _encode_address(safe_tx.refund_receiver)
        + _encode_uint(head_size + len(data_tail) // 2)
    )
    return EXEC_TRANSACTION + head + data_tail + _encode_bytes(packed_signatures)


# ---------------------------------------------------------------------------
# Return data decoders
# ---------------------------------------------------------------------------


def decode_uint(result: str) -> int:
    data = _strip_0x(result or "")
    if not data:
        raise ValueError("Empty return data")
    return int(data[:64], 16)


def decode_bool(result: str) -> bool:
    return decode_uint(result) != 0


def decode_address(word: str) -> str:
    return to_checksum_address("0x" + word[-40:])


def decode_address_array(result: str) -> List[str]:
    data = _strip_0x(result or "")
    if not data:
        raise ValueError("Empty return data")
    offset = int(data[:64], 16) * 2
    length = int(data[offset:offset + 64], 16)
    start = offset + 64
    return [decode_address(data[start + i * 64:start + (i + 1) * 64]) for i in range(length)]


def decode_revert_reason(data: Optional[str]) -> Optional[str]:
    """Extract a human-readable reason from revert data, if there is one."""
    if not data or not isinstance(data, str):
        return None
    lowered = data.lower()
    payload = _strip_0x(lowered)[8:]
    try:
        if lowered.startswith(ERROR_SELECTOR):
            offset = int(payload[:64], 16) * 2
            length = int(payload[offset:offset + 64], 16)
            raw = payload[offset + 64:offset + 64 + length * 2]
            return bytes.fromhex(raw).decode("utf-8", errors="replace")
        if lowered.startswith(PANIC_SELECTOR):
            return f"panic code {int(payload[:64], 16):#x}"
    except ValueError:
        return None
    return None


# ---------------------------------------------------------------------------
# EIP-712
# ---------------------------------------------------------------------------


def _hex_to_bytes(data: str) -> bytes:
    return bytes.fromhex(_strip_0x(data or "0x"))


def safe_tx_typed_data(safe_tx: SafeTransaction) -> Dict[str, Any]:
    """Canonical typed data for a SafeTransaction; what every owner signs."""
    intent = safe_tx.intent
    return {
        "types": {
            "EIP712Domain": [
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "SafeTx": [
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "data", "type": "bytes"},
                {"name": "operation", "type": "uint8"},
                {"name": "safeTxGas", "type": "uint256"},
                {"name": "baseGas", "type": "uint256"},
                {"name": "gasPrice", "type": "uint256"},
                {"name": "gasToken", "type": "address"},
                {"name": "refundReceiver", "type": "address"},
                {"name": "nonce", "type": "uint256"},
            ],
        },
        "primaryType": "SafeTx",
        "domain": {
            "chainId": intent.chain_id,
            "verifyingContract": to_checksum_address(intent.wallet),
        },
        "message": {
            "to": to_checksum_address(intent.to),
            "value": intent.value,
            "data": _hex_to_bytes(intent.data),
            "operation": int(intent.operation),
            "safeTxGas": safe_tx.safe_tx_gas,
            "baseGas": safe_tx.base_gas,
            "gasPrice": safe_tx.gas_price,
            "gasToken": to_checksum_address(safe_tx.gas_token),
            "refundReceiver": to_checksum_address(safe_tx.refund_receiver),
            "nonce": safe_tx.nonce,
        },
    }


def session_intent_typed_data(intent: TransactionIntent, nonce: int, valid_until: int) -> Dict[str, Any]:
    """Typed data a session key signs to authorize one intent at one wallet nonce."""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "SessionIntent": [
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "data", "type": "bytes"},
                {"name": "nonce", "type": "uint256"},
                {"name": "validUntil", "type": "uint256"},
            ],
        },
        "primaryType": "SessionIntent",
        "domain": {
            "name": "SafeRelaySession",
            "version": "1",
            "chainId": intent.chain_id,
            "verifyingContract": to_checksum_address(intent.wallet),
        },
        "message": {
            "to": to_checksum_address(intent.to),
            "value": intent.value,
            "data": _hex_to_bytes(intent.data),
            "nonce": nonce,
            "validUntil": valid_until,
        },
    }


def signable(typed_data: Dict[str, Any]) -> SignableMessage:
    return encode_typed_data(full_message=typed_data)


def typed_data_hash(typed_data: Dict[str, Any]) -> str:
    """The 32-byte digest that is actually signed (safeTxHash for SafeTx)."""
    message = signable(typed_data)
    return "0x" + keccak(b"\x19" + message.version + message.header + message.body).hex()


def safe_tx_hash(safe_tx: SafeTransaction) -> str:
    return typed_data_hash(safe_tx_typed_data(safe_tx))
