"""
Address-keyed backup of wallet metadata.

One JSON file per lowercase owner address under ``settings.storage_dir``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import settings
from .address import normalize_address, require_address

logger = logging.getLogger(__name__)


class WalletBlobStore:
    """Flat-file put/get of a user's known Safes."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or settings.storage_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, address: str) -> Path:
        require_address(address, "address")
        return self.root / f"{normalize_address(address)}.json"

    def put(self, address: str, safes: List[Dict[str, Any]]) -> Dict[str, Any]:
        payload = {
            "userAddress": normalize_address(address),
            "safes": safes,
            "lastBackup": datetime.now(timezone.utc).isoformat(),
        }
        path = self._path(address)
        path.write_text(json.dumps(payload, default=str, indent=2), encoding="utf-8")
        logger.info(f"Backed up {len(safes)} safe(s) for {payload['userAddress']}")
        return payload

    def get(self, address: str) -> Optional[Dict[str, Any]]:
        path = self._path(address)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))
