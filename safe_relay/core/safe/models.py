"""
Multisig wallet, transaction intent and signature models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Set, Tuple

from ...services.address import ZERO_ADDRESS, normalize_address
from ..errors import ValidationError

# transfer(address,uint256)
ERC20_TRANSFER_SELECTOR = "0xa9059cbb"


class Operation(IntEnum):
    """Safe call type."""
    CALL = 0
    DELEGATE_CALL = 1


class TxState(str, Enum):
    """Per-transaction relay lifecycle."""
    DRAFT = "draft"
    PARTIALLY_SIGNED = "partially_signed"
    THRESHOLD_MET = "threshold_met"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


class InvalidTransitionError(Exception):
    """Raised when a lifecycle transition is not allowed."""

    def __init__(self, from_state: TxState, to_state: TxState):
        super().__init__(f"Invalid transition {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


@dataclass(frozen=True)
class MultisigWallet:
    """Snapshot of a Safe's ownership as read from the chain."""
    address: str
    chain_id: int
    owners: Tuple[str, ...]
    threshold: int

    def __post_init__(self):
        if not 1 <= self.threshold <= len(self.owners):
            raise ValidationError(
                f"Threshold {self.threshold} out of range for {len(self.owners)} owner(s)"
            )

    def is_owner(self, address: str) -> bool:
        return normalize_address(address) in {normalize_address(o) for o in self.owners}


@dataclass(frozen=True)
class TransactionIntent:
    """A call the wallet should make. Immutable once created."""
    wallet: str
    chain_id: int
    to: str
    value: int = 0
    data: str = "0x"
    operation: Operation = Operation.CALL

    @property
    def is_token_transfer(self) -> bool:
        return self.data.lower().startswith(ERC20_TRANSFER_SELECTOR)

    @property
    def token_target(self) -> str:
        """Token moved by this intent; the zero address for native value."""
        return self.to if self.is_token_transfer else ZERO_ADDRESS


@dataclass(frozen=True)
class SafeTransaction:
    """A TransactionIntent pinned to a wallet nonce, ready for signing."""
    intent: TransactionIntent
    nonce: int
    safe_tx_gas: int = 0
    base_gas: int = 0
    gas_price: int = 0
    gas_token: str = ZERO_ADDRESS
    refund_receiver: str = ZERO_ADDRESS


@dataclass(frozen=True)
class OwnerSignature:
    owner: str
    signature: str  # 0x-prefixed r || s || v


@dataclass
class SignatureSet:
    """
    Owner signatures accumulated for one SafeTransaction.

    No owner appears twice. The size is only ever compared against the
    wallet threshold.
    """
    safe_tx: SafeTransaction
    signatures: List[OwnerSignature] = field(default_factory=list)

    def add(self, signature: OwnerSignature) -> bool:
        """Append a signature. Returns False if the owner already signed."""
        if normalize_address(signature.owner) in self._owner_keys():
            return False
        self.signatures.append(signature)
        return True

    def _owner_keys(self) -> Set[str]:
        return {normalize_address(s.owner) for s in self.signatures}

    @property
    def size(self) -> int:
        return len(self.signatures)

    @property
    def owners(self) -> List[str]:
        return [s.owner for s in self.signatures]

    def state_for(self, threshold: int) -> TxState:
        if not self.signatures:
            return TxState.DRAFT
        if self.size < threshold:
            return TxState.PARTIALLY_SIGNED
        return TxState.THRESHOLD_MET

    def packed(self) -> str:
        """Signatures concatenated in ascending owner order, as execTransaction expects."""
        ordered = sorted(self.signatures, key=lambda s: int(s.owner, 16))
        return "0x" + "".join(s.signature[2:] if s.signature.startswith("0x") else s.signature for s in ordered)


@dataclass
class TransactionResult:
    """Outcome of submitting a Safe transaction."""
    tx_hash: Optional[str] = None
    status: TxState = TxState.SUBMITTED
    chain_id: int = 0

    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    submitted_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    error: Optional[str] = None
    revert_reason: Optional[str] = None
    timed_out: bool = False

    @property
    def is_success(self) -> bool:
        return self.status == TxState.CONFIRMED


class RelayTransaction:
    """Tracks one transaction through the relay lifecycle."""

    TRANSITIONS: Dict[TxState, Set[TxState]] = {
        TxState.DRAFT: {TxState.PARTIALLY_SIGNED, TxState.THRESHOLD_MET},
        TxState.PARTIALLY_SIGNED: {TxState.PARTIALLY_SIGNED, TxState.THRESHOLD_MET},
        TxState.THRESHOLD_MET: {TxState.THRESHOLD_MET, TxState.SUBMITTED},
        TxState.SUBMITTED: {TxState.CONFIRMED, TxState.REVERTED},
        # Terminal: no retry across the submission boundary.
        TxState.CONFIRMED: set(),
        TxState.REVERTED: set(),
    }

    def __init__(self, signature_set: SignatureSet, threshold: int):
        self.signature_set = signature_set
        self.threshold = threshold
        self.state = TxState.DRAFT
        self.history: List[Tuple[TxState, datetime]] = [(self.state, datetime.now(timezone.utc))]
        self.sync_signatures()

    def can_transition(self, to_state: TxState) -> bool:
        return to_state in self.TRANSITIONS.get(self.state, set())

    def transition_to(self, to_state: TxState) -> None:
        if not self.can_transition(to_state):
            raise InvalidTransitionError(self.state, to_state)
        self.state = to_state
        self.history.append((to_state, datetime.now(timezone.utc)))

    def sync_signatures(self) -> None:
        """Move to the signing state implied by the current signature count."""
        target = self.signature_set.state_for(self.threshold)
        if target != self.state and target != TxState.DRAFT:
            self.transition_to(target)
