"""
Relay orchestration for Safe multisig transactions.

Owners sign, the relayer pays:

1. Build a SafeTransaction from an intent at the wallet's current nonce
2. Collect owner signatures into a SignatureSet
3. Re-read owners and threshold, verify every signature, and only then
   submit execTransaction under the payer's identity
4. Wait (bounded) for the receipt

A reverted or timed-out submission is terminal. It is reported to the
caller and never resubmitted here.
"""

import logging
import time
from typing import Iterable, List, Optional, Sequence, Tuple

from ...config import settings
from ...services.address import normalize_address, require_address, same_address
from ...services.values import require_hex_data, require_uint256
from ..errors import (
    ConfirmationTimeout,
    ExecutionFailed,
    InsufficientSignatures,
    NotAnOwner,
    ValidationError,
)
from ..realtime import EventStatus, NotificationBroadcaster, TransactionEvent
from .codec import safe_tx_typed_data
from .gateway import SafeGateway
from .models import (
    MultisigWallet,
    OwnerSignature,
    RelayTransaction,
    SafeTransaction,
    SignatureSet,
    TransactionIntent,
    TransactionResult,
    TxState,
)
from .signers import Payer, WalletSigner, recover_signer

logger = logging.getLogger(__name__)


class RelayOrchestrator:
    """Builds, signs and submits Safe transactions for one chain."""

    def __init__(
        self,
        gateway: SafeGateway,
        broadcaster: Optional[NotificationBroadcaster] = None,
        confirmation_timeout_seconds: Optional[float] = None,
    ):
        self.gateway = gateway
        self.broadcaster = broadcaster
        self.confirmation_timeout_seconds = (
            confirmation_timeout_seconds or settings.confirmation_timeout_seconds
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_wallet(self, address: str) -> MultisigWallet:
        """Fetch a fresh ownership snapshot."""
        address = require_address(address, "safeAddress")
        owners = await self.gateway.get_owners(address)
        threshold = await self.gateway.get_threshold(address)
        return MultisigWallet(
            address=address,
            chain_id=self.gateway.chain_id,
            owners=tuple(owners),
            threshold=threshold,
        )

    async def build_transaction(self, intent: TransactionIntent) -> SafeTransaction:
        self.validate_intent(intent)
        nonce = await self.gateway.get_nonce(intent.wallet)
        return SafeTransaction(intent=intent, nonce=nonce)

    def validate_intent(self, intent: TransactionIntent) -> None:
        """Reject malformed intents before anything touches the chain."""
        require_address(intent.wallet, "safeAddress")
        require_address(intent.to, "to")
        require_uint256(intent.value, "value")
        require_hex_data(intent.data, "data")
        if intent.chain_id != self.gateway.chain_id:
            raise ValidationError(
                f"Intent targets chain {intent.chain_id}, relay is bound to {self.gateway.chain_id}"
            )

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    async def prepare_and_sign(
        self,
        wallet: MultisigWallet,
        intent: TransactionIntent,
        signer: WalletSigner,
        *,
        require_owner: bool = True,
        signature_set: Optional[SignatureSet] = None,
    ) -> SignatureSet:
        """
        Sign ``intent`` as ``signer`` and add the signature to a SignatureSet.

        Passing an existing ``signature_set`` adds another owner's signature
        over the same SafeTransaction; otherwise a new one is started at the
        wallet's current nonce.

        Raises:
            InvalidAddress: wallet or destination is malformed
            NotAnOwner: ``require_owner`` and the signer is not an owner
        """
        require_address(wallet.address, "safeAddress")
        self.validate_intent(intent)
        if not same_address(intent.wallet, wallet.address):
            raise ValidationError("Intent does not target this wallet")

        if require_owner and not wallet.is_owner(signer.address):
            raise NotAnOwner(
                f"{signer.address} is not an owner of {wallet.address}",
                payload={"owners": list(wallet.owners)},
            )

        if signature_set is None:
            safe_tx = await self.build_transaction(intent)
            signature_set = SignatureSet(safe_tx=safe_tx)
        elif signature_set.safe_tx.intent != intent:
            raise ValidationError("Signature set was collected for a different intent")

        signature = signer.sign_intent(signature_set.safe_tx)
        if not signature_set.add(signature):
            logger.info(f"{signer.address} already signed this transaction")
        else:
            logger.info(
                f"Transaction signed by {signer.address} "
                f"({signature_set.size}/{wallet.threshold} signatures)"
            )
        return signature_set

    def add_signature(self, signature_set: SignatureSet, owner: str, signature: str) -> bool:
        """Add a pre-collected signature after checking it was made by ``owner``."""
        owner = require_address(owner, "owner")
        recovered = recover_signer(safe_tx_typed_data(signature_set.safe_tx), signature)
        if not same_address(recovered, owner):
            raise ValidationError(f"Signature does not belong to {owner}")
        return signature_set.add(OwnerSignature(owner=owner, signature=signature))

    def _verified(self, signature_set: SignatureSet, owners: Sequence[str]) -> SignatureSet:
        """Keep only signatures that recover to a current owner."""
        typed_data = safe_tx_typed_data(signature_set.safe_tx)
        owner_keys = {normalize_address(o) for o in owners}
        verified = SignatureSet(safe_tx=signature_set.safe_tx)

        for sig in signature_set.signatures:
            try:
                recovered = recover_signer(typed_data, sig.signature)
            except ValidationError as e:
                logger.warning(f"Dropping malformed signature from {sig.owner}: {e.details}")
                continue
            if not same_address(recovered, sig.owner):
                logger.warning(f"Dropping signature claimed by {sig.owner} but made by {recovered}")
                continue
            if normalize_address(recovered) not in owner_keys:
                logger.warning(f"Dropping signature from non-owner {recovered}")
                continue
            verified.add(sig)

        return verified

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        wallet: MultisigWallet,
        signature_set: SignatureSet,
        payer: Payer,
    ) -> TransactionResult:
        """
        Submit a signed transaction, paid by ``payer``, and wait for its receipt.

        Raises:
            InsufficientSignatures: fewer valid owner signatures than the threshold
            ExecutionFailed: the submission reverted or was rejected
            ConfirmationTimeout: no receipt within the confirmation window
        """
        if signature_set.size < wallet.threshold:
            raise self._insufficient(wallet.owners, wallet.threshold, signature_set.size)

        # State may have moved while signatures were collected.
        address = wallet.address
        owners = await self.gateway.get_owners(address)
        threshold = await self.gateway.get_threshold(address)
        nonce = await self.gateway.get_nonce(address)

        if nonce != signature_set.safe_tx.nonce:
            raise ValidationError(
                f"Signatures were collected for nonce {signature_set.safe_tx.nonce} "
                f"but the wallet is at nonce {nonce}; sign again"
            )

        verified = self._verified(signature_set, owners)
        if verified.size < threshold:
            raise self._insufficient(owners, threshold, verified.size)

        relay_tx = RelayTransaction(verified, threshold)
        logger.info(
            f"Executing transaction on {address} with {verified.size}/{threshold} "
            f"signatures, paid by {payer.address}"
        )

        tx_hash = await self.gateway.exec_transaction(verified.safe_tx, verified, payer)
        relay_tx.transition_to(TxState.SUBMITTED)

        result = await self.gateway.wait_for_receipt(tx_hash, self.confirmation_timeout_seconds)
        relay_tx.transition_to(result.status)
        self._raise_if_reverted(result, address)

        logger.info(f"Transaction executed: {tx_hash} (block {result.block_number})")
        return result

    @staticmethod
    def _raise_if_reverted(result: TransactionResult, context: str) -> None:
        if result.status != TxState.REVERTED:
            return
        logger.error(f"Transaction {result.tx_hash} on {context} did not confirm: {result.error}")
        error_cls = ConfirmationTimeout if result.timed_out else ExecutionFailed
        raise error_cls(
            result.error or "Transaction reverted",
            revert_reason=result.revert_reason,
            payload={"txHash": result.tx_hash},
        )

    @staticmethod
    def _insufficient(owners: Iterable[str], threshold: int, provided: int) -> InsufficientSignatures:
        return InsufficientSignatures(
            f"This Safe requires {threshold} signatures but only {provided} provided.",
            payload={"owners": list(owners), "threshold": threshold},
        )

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    async def deploy_wallet(
        self,
        owners: Sequence[str],
        threshold: int,
        payer: Payer,
        *,
        salt_nonce: int = 0,
    ) -> Tuple[str, TransactionResult]:
        """
        Deploy a new Safe through the proxy factory, paid by ``payer``.

        Duplicate owners collapse to one entry, keeping the first position.

        Raises:
            InvalidAddress: an owner is malformed
            ValidationError: threshold outside 1..len(owners)
            ExecutionFailed: the deployment reverted
        """
        unique: List[str] = []
        for owner in owners:
            owner = require_address(owner, "owner")
            if not any(same_address(owner, o) for o in unique):
                unique.append(owner)
        if not 1 <= threshold <= len(unique):
            raise ValidationError(f"Threshold {threshold} must be between 1 and {len(unique)}")
        require_uint256(salt_nonce, "saltNonce")

        logger.info(f"Deploying Safe on chain {self.gateway.chain_id} for owners {unique}, paid by {payer.address}")
        address, tx_hash = await self.gateway.deploy_wallet(unique, threshold, payer, salt_nonce)
        result = await self.gateway.wait_for_receipt(tx_hash, self.confirmation_timeout_seconds)
        self._raise_if_reverted(result, address)

        logger.info(f"Safe deployed at {address}: {tx_hash}")
        return address, result

    async def fund(self, address: str, value: int, payer: Payer) -> TransactionResult:
        """Send native value from ``payer`` to ``address`` and wait for it."""
        address = require_address(address, "address")
        require_uint256(value, "value")
        tx_hash = await self.gateway.send_native(address, value, payer)
        result = await self.gateway.wait_for_receipt(tx_hash, self.confirmation_timeout_seconds)
        self._raise_if_reverted(result, address)
        logger.info(f"Funded {address} with {value} wei: {tx_hash}")
        return result

    # ------------------------------------------------------------------
    # One-shot relay
    # ------------------------------------------------------------------

    async def relay(
        self,
        intent: TransactionIntent,
        signers: List[WalletSigner],
        payer: Payer,
        *,
        extra_signatures: Sequence[OwnerSignature] = (),
        tx_id: Optional[str] = None,
        recipient: Optional[str] = None,
        amount: Optional[str] = None,
    ) -> TransactionResult:
        """Sign with every signer, merge pre-collected signatures, execute and notify."""
        started = time.monotonic()
        event_kwargs = {
            "tx_id": tx_id,
            "recipient": recipient,
            "from_address": intent.wallet,
            "amount": amount,
        }

        self.validate_intent(intent)
        await self._emit(TransactionEvent(status=EventStatus.PENDING, **event_kwargs))

        try:
            wallet = await self.load_wallet(intent.wallet)
            signature_set: Optional[SignatureSet] = None
            for signer in signers:
                signature_set = await self.prepare_and_sign(
                    wallet, intent, signer, signature_set=signature_set
                )
            if signature_set is None:
                signature_set = SignatureSet(safe_tx=await self.build_transaction(intent))
            for extra in extra_signatures:
                self.add_signature(signature_set, extra.owner, extra.signature)

            if signature_set.size >= wallet.threshold:
                await self._emit(TransactionEvent(status=EventStatus.SIGNED, **event_kwargs))

            result = await self.execute(wallet, signature_set, payer)
        except Exception as e:
            await self._emit(TransactionEvent(
                status=EventStatus.FAILED,
                message=getattr(e, "details", str(e)),
                tx_hash=getattr(e, "payload", {}).get("txHash"),
                **event_kwargs,
            ))
            raise

        await self._emit(TransactionEvent(
            status=EventStatus.EXECUTED,
            tx_hash=result.tx_hash,
            duration=round(time.monotonic() - started, 2),
            **event_kwargs,
        ))
        return result

    async def _emit(self, event: TransactionEvent) -> None:
        if self.broadcaster is None or not (event.tx_id or event.recipient):
            return
        await self.broadcaster.publish(event)
