"""Service layer helpers"""

from .address import (
    ZERO_ADDRESS,
    checksum,
    is_valid_address,
    normalize_address,
    require_address,
    same_address,
)
from .chains import ChainEndpointResolver, resolve_rpc_endpoint
from .storage import WalletBlobStore
from .values import MAX_UINT256, require_hex_data, require_uint256

__all__ = [
    "ZERO_ADDRESS",
    "checksum",
    "is_valid_address",
    "normalize_address",
    "require_address",
    "same_address",
    "ChainEndpointResolver",
    "resolve_rpc_endpoint",
    "WalletBlobStore",
    "MAX_UINT256",
    "require_hex_data",
    "require_uint256",
]
