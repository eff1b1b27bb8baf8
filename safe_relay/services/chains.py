"""
RPC endpoint resolution for supported chains.

Endpoints come from ``settings.rpc_urls``; each chain id maps to exactly one
URL. Callers treat the result as an opaque URL.
"""

from typing import Dict, Optional

from safe_relay.config import settings
from safe_relay.core.errors import ValidationError


class ChainEndpointResolver:
    """Resolve a chain id to a usable RPC URL."""

    def __init__(self, rpc_urls: Optional[Dict[int, str]] = None):
        self._rpc_urls = dict(rpc_urls if rpc_urls is not None else settings.rpc_urls)

    def resolve(self, chain_id: int) -> str:
        url = self._rpc_urls.get(int(chain_id))
        if not url:
            raise ValidationError(f"Unsupported chain ID: {chain_id}")
        return url

    def supported_chain_ids(self) -> list[int]:
        return sorted(self._rpc_urls)


def resolve_rpc_endpoint(chain_id: int) -> str:
    """Module-level shortcut using the configured endpoints."""
    return ChainEndpointResolver().resolve(chain_id)
