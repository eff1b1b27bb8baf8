"""Read-only detection of enabled Safe modules."""

import logging

from ..errors import UpstreamError
from .gateway import SafeGateway

logger = logging.getLogger(__name__)


class ModuleDetector:
    """
    Answers whether a permission module is enabled on a wallet.

    A failed query answers ``False``. The log line for that case carries
    ``reason=network_error`` so it is never mistaken for a confirmed
    "disabled" read.
    """

    def __init__(self, gateway: SafeGateway):
        self.gateway = gateway

    async def is_enabled(self, wallet: str, module_address: str) -> bool:
        try:
            enabled = await self.gateway.is_module_enabled(wallet, module_address)
        except UpstreamError as e:
            logger.warning(
                f"Module state unknown for {wallet}, treating as disabled: {e}",
                extra={"module_address": module_address, "reason": "network_error"},
            )
            return False

        logger.info(
            f"Module {module_address} {'enabled' if enabled else 'disabled'} on {wallet}",
            extra={"module_address": module_address, "reason": "confirmed"},
        )
        return enabled
