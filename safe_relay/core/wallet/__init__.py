"""
Session key management.

- SessionKeyAuthority: issue, policy-check and revoke session keys
- SessionKeyStore: in-memory bookkeeping per (wallet, key)
- RevocationResult: Authoritative (on-chain) or Simulated (local only)

Usage:
    from safe_relay.core.wallet import SessionKeyAuthority, SessionKeyStore

    authority = SessionKeyAuthority(orchestrator, SessionKeyStore())
    session, private_key = authority.create_session_key(wallet, owner_address)

    result = await authority.revoke(session, payer, caller=owner_address)
    if not result.on_chain:
        # Recorded locally only
        ...
"""

from .models import (
    Accept,
    Authoritative,
    PolicyCheck,
    Reject,
    RevocationResult,
    SessionKey,
    SessionPolicy,
    Simulated,
    ValidationResult,
    synthetic_tx_hash,
)
from .session_store import SessionKeyStore
from .session_authority import SessionKeyAuthority

__all__ = [
    # Models
    "Accept",
    "Authoritative",
    "PolicyCheck",
    "Reject",
    "RevocationResult",
    "SessionKey",
    "SessionPolicy",
    "Simulated",
    "ValidationResult",
    "synthetic_tx_hash",
    # Lifecycle
    "SessionKeyStore",
    "SessionKeyAuthority",
]
