"""
Session key models.

A session key is a delegated signing key with a bounded policy: how much
native value a single intent may move, which tokens it may touch, and the
window in which it is valid.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Union
import secrets

from ...services.address import ZERO_ADDRESS, normalize_address


@dataclass(frozen=True)
class SessionPolicy:
    """Permission policy attached to a session key."""
    spending_limit: int  # wei, per intent
    allowed_tokens: FrozenSet[str] = field(default_factory=lambda: frozenset({ZERO_ADDRESS}))
    valid_after: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    valid_until: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def allows_token(self, token: str) -> bool:
        return normalize_address(token) in {normalize_address(t) for t in self.allowed_tokens}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spendingLimit": str(self.spending_limit),
            "allowedTokens": sorted(self.allowed_tokens),
            "validAfter": int(self.valid_after.timestamp()),
            "validUntil": int(self.valid_until.timestamp()),
        }


@dataclass
class SessionKey:
    """
    A delegated key for one wallet.

    Created by an owner, consumed repeatedly, terminated by expiry or
    revocation. The private key is never held here.
    """
    address: str
    wallet_address: str
    chain_id: int
    policy: SessionPolicy
    derivation_index: int = 0
    created_by: Optional[str] = None

    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    active: bool = True
    revoked_at: Optional[datetime] = None

    @property
    def expires_at(self) -> datetime:
        return self.policy.valid_until

    def mark_inactive(self) -> None:
        self.active = False
        self.revoked_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Public view; timestamps in milliseconds."""
        return {
            "address": self.address,
            "createdBy": self.created_by,
            "expiresAt": int(self.expires_at.timestamp() * 1000),
            "active": self.active,
            "revokedAt": int(self.revoked_at.timestamp() * 1000) if self.revoked_at else None,
            "permissions": self.policy.to_dict(),
        }


@dataclass(frozen=True)
class Accept:
    """Intent is within the session policy."""
    accepted: bool = field(default=True, init=False)


class PolicyCheck(str, Enum):
    STATUS = "status"
    WINDOW = "window"
    SPENDING_LIMIT = "spending_limit"
    TOKEN = "token"


@dataclass(frozen=True)
class Reject:
    """Intent violates the session policy; ``reason`` names the first failing check."""
    reason: str
    check: PolicyCheck
    accepted: bool = field(default=False, init=False)


ValidationResult = Union[Accept, Reject]


def synthetic_tx_hash() -> str:
    """Placeholder identifier for an off-chain result. Never a real transaction."""
    return "0x" + secrets.token_hex(32)


@dataclass(frozen=True)
class Authoritative:
    """Revocation executed on-chain; ``tx_hash`` is a real transaction."""
    tx_hash: str

    @property
    def on_chain(self) -> bool:
        return True

    def to_response(self) -> Dict[str, Any]:
        return {"success": True, "txHash": self.tx_hash, "onChain": True}


@dataclass(frozen=True)
class Simulated:
    """
    Revocation recorded locally only.

    ``tx_hash`` is synthetic. ``warning`` is set when an error forced the
    fallback, and left empty when the module was simply not enabled.
    """
    tx_hash: str = field(default_factory=synthetic_tx_hash)
    warning: Optional[str] = None

    @property
    def on_chain(self) -> bool:
        return False

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": True, "txHash": self.tx_hash, "onChain": False}
        if self.warning:
            body["warning"] = self.warning
        return body


RevocationResult = Union[Authoritative, Simulated]
