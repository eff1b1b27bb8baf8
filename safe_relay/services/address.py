"""Helpers for validating and normalizing EVM account addresses."""

from __future__ import annotations

import re
from functools import lru_cache

from eth_utils import to_checksum_address

from ..core.errors import InvalidAddress

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def is_valid_address(address: object) -> bool:
    """Return True for a 0x-prefixed, 20-byte hex string."""

    if not isinstance(address, str) or not address:
        return False
    return bool(_EVM_ADDRESS_RE.fullmatch(address))


def normalize_address(address: str) -> str:
    """Lowercase form used as a map key."""

    return address.lower()


@lru_cache(maxsize=1024)
def checksum(address: str) -> str:
    return to_checksum_address(address)


def require_address(address: object, field: str = "address") -> str:
    """Return the checksummed address or raise ``InvalidAddress``."""

    if not is_valid_address(address):
        raise InvalidAddress(f"{field} is not a valid account address: {address!r}")
    return checksum(address)  # type: ignore[arg-type]


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


__all__ = [
    "ZERO_ADDRESS",
    "is_valid_address",
    "normalize_address",
    "checksum",
    "require_address",
    "same_address",
]
