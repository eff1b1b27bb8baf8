"""
In-memory session key bookkeeping.
"""

import logging
from typing import Dict, List, Optional, Tuple

from ...services.address import normalize_address
from .models import SessionKey

logger = logging.getLogger(__name__)


class SessionKeyStore:
    """Session keys keyed by (wallet, session key address), both lowercase."""

    def __init__(self) -> None:
        self._sessions: Dict[Tuple[str, str], SessionKey] = {}
        self._next_index: Dict[str, int] = {}

    @staticmethod
    def _key(wallet: str, address: str) -> Tuple[str, str]:
        return normalize_address(wallet), normalize_address(address)

    def next_derivation_index(self, wallet: str) -> int:
        wallet = normalize_address(wallet)
        index = self._next_index.get(wallet, 0)
        self._next_index[wallet] = index + 1
        return index

    def add(self, session: SessionKey) -> None:
        self._sessions[self._key(session.wallet_address, session.address)] = session
        logger.info(f"Stored session key {session.address} for {session.wallet_address}")

    def get(self, wallet: str, address: str) -> Optional[SessionKey]:
        return self._sessions.get(self._key(wallet, address))

    def list_for_wallet(self, wallet: str, active_only: bool = False) -> List[SessionKey]:
        wallet = normalize_address(wallet)
        return [
            s for (w, _), s in self._sessions.items()
            if w == wallet and (s.active or not active_only)
        ]

    def mark_inactive(self, wallet: str, address: str) -> bool:
        """Returns False if the session is unknown."""
        session = self.get(wallet, address)
        if session is None:
            return False
        session.mark_inactive()
        logger.info(f"Session key {address} for {wallet} marked inactive")
        return True
