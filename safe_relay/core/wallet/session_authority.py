"""
Session key authority.

Issues session keys, checks session-authorized intents against their
policy, and revokes keys either on-chain through the Smart Sessions module
or, when that is not possible, locally with an explicit Simulated result.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple

from eth_account import Account

from ...config import settings
from ...services.address import ZERO_ADDRESS, require_address, same_address
from ..errors import (
    InvalidSessionCredential,
    NotAnOwner,
    Unauthorized,
    ValidationError,
)
from ..safe.codec import build_disable_session_call, session_intent_typed_data
from ..safe.models import MultisigWallet, TransactionIntent
from ..safe.module_detector import ModuleDetector
from ..safe.orchestrator import RelayOrchestrator
from ..safe.signers import Payer, WalletSigner, recover_signer
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
)
from .session_store import SessionKeyStore

logger = logging.getLogger(__name__)


class SessionKeyAuthority:
    """Policy checks and lifecycle for session keys of Safes on one chain."""

    def __init__(
        self,
        orchestrator: RelayOrchestrator,
        store: SessionKeyStore,
        detector: Optional[ModuleDetector] = None,
        module_address: Optional[str] = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.detector = detector or ModuleDetector(orchestrator.gateway)
        self.module_address = require_address(
            module_address or settings.smart_sessions_module, "moduleAddress"
        )

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def create_session_key(
        self,
        wallet: MultisigWallet,
        owner: str,
        *,
        spending_limit: Optional[int] = None,
        allowed_tokens: Optional[Iterable[str]] = None,
        ttl_hours: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[SessionKey, str]:
        """
        Generate a new session key for ``wallet`` on behalf of ``owner``.

        Returns the stored SessionKey and its private key. The private key is
        handed to the caller once and not kept.
        """
        owner = require_address(owner, "userAddress")
        if not wallet.is_owner(owner):
            raise NotAnOwner(
                f"{owner} is not an owner of {wallet.address}",
                payload={"owners": list(wallet.owners)},
            )

        now = now or datetime.now(timezone.utc)
        ttl = timedelta(hours=ttl_hours or settings.session_key_default_ttl_hours)
        tokens = frozenset(
            require_address(t, "allowedTokens") for t in (allowed_tokens or [ZERO_ADDRESS])
        )
        policy = SessionPolicy(
            spending_limit=(
                settings.session_key_default_spending_limit_wei
                if spending_limit is None else spending_limit
            ),
            allowed_tokens=tokens,
            valid_after=now,
            valid_until=now + ttl,
        )

        account = Account.create()
        session = SessionKey(
            address=account.address,
            wallet_address=wallet.address,
            chain_id=wallet.chain_id,
            policy=policy,
            derivation_index=self.store.next_derivation_index(wallet.address),
            created_by=owner,
            issued_at=now,
        )
        self.store.add(session)
        logger.info(
            f"Created session key {session.address} for {wallet.address}, "
            f"valid until {policy.valid_until.isoformat()}"
        )
        return session, "0x" + bytes(account.key).hex()

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def validate(
        self,
        session: SessionKey,
        intent: TransactionIntent,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """Check ``intent`` against the session policy. The first failing check wins."""
        now = now or datetime.now(timezone.utc)
        policy = session.policy

        if not session.active:
            return Reject("Session key has been revoked", PolicyCheck.STATUS)
        if now < policy.valid_after:
            return Reject("Session key is not yet valid", PolicyCheck.WINDOW)
        if now > policy.valid_until:
            return Reject("Session key has expired", PolicyCheck.WINDOW)
        if intent.value > policy.spending_limit:
            return Reject(
                f"Value {intent.value} exceeds spending limit {policy.spending_limit}",
                PolicyCheck.SPENDING_LIMIT,
            )
        if intent.is_token_transfer and not policy.allows_token(intent.token_target):
            return Reject(f"Token {intent.token_target} is not allowed", PolicyCheck.TOKEN)
        return Accept()

    def verify_session_signature(
        self,
        session: SessionKey,
        intent: TransactionIntent,
        nonce: int,
        signature: str,
    ) -> None:
        """Require ``signature`` to be the session key's signature over this intent at ``nonce``."""
        typed_data = session_intent_typed_data(
            intent, nonce, int(session.policy.valid_until.timestamp())
        )
        try:
            recovered = recover_signer(typed_data, signature)
        except ValidationError as e:
            raise InvalidSessionCredential(e.details) from e
        if not same_address(recovered, session.address):
            raise InvalidSessionCredential(
                f"Session signature was made by {recovered}, expected {session.address}"
            )

    async def authorize(
        self,
        session_address: str,
        intent: TransactionIntent,
        signature: Optional[str],
        *,
        valid_after: Optional[int] = None,
        valid_until: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SessionKey:
        """
        Resolve, verify and policy-check a session-authorized intent.

        Raises:
            InvalidSessionCredential: unknown key, bad signature or outside its window (401)
            Unauthorized: intent exceeds the policy (403)
        """
        session_address = require_address(session_address, "sessionKeyAddress")
        session = self.store.get(intent.wallet, session_address)
        if session is None:
            raise InvalidSessionCredential(f"Unknown session key {session_address}")
        if not signature:
            raise InvalidSessionCredential("sessionSignature is required with a session key")
        # A client-supplied window must agree with the stored policy.
        if valid_after is not None and valid_after != int(session.policy.valid_after.timestamp()):
            raise InvalidSessionCredential("validAfter does not match the session key policy")
        if valid_until is not None and valid_until != int(session.policy.valid_until.timestamp()):
            raise InvalidSessionCredential("validUntil does not match the session key policy")

        nonce = await self.orchestrator.gateway.get_nonce(intent.wallet)
        self.verify_session_signature(session, intent, nonce, signature)

        result = self.validate(session, intent, now)
        if isinstance(result, Reject):
            logger.warning(f"Session key {session.address} rejected: {result.reason}")
            if result.check in (PolicyCheck.STATUS, PolicyCheck.WINDOW):
                raise InvalidSessionCredential(result.reason)
            raise Unauthorized(result.reason, message="Session key policy violation")
        return session

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    async def revoke(
        self,
        session: SessionKey,
        payer: Payer,
        *,
        caller: Optional[str] = None,
        owner_signer: Optional[WalletSigner] = None,
        relayer_signer: Optional[WalletSigner] = None,
    ) -> RevocationResult:
        """
        Revoke ``session``.

        The caller must be an owner. An ``owner_signer`` proves that by
        itself; otherwise ``caller`` is checked against the current owners.
        With the module enabled the disableSession call is signed by the
        owner (or the relayer, when it is an owner) and executed on-chain.
        Anything else ends in a Simulated result.

        Raises:
            Unauthorized: the caller is not an owner of the wallet
        """
        wallet = await self.orchestrator.load_wallet(session.wallet_address)

        if owner_signer is not None:
            if not wallet.is_owner(owner_signer.address):
                raise NotAnOwner(f"{owner_signer.address} is not an owner of {wallet.address}")
        elif caller is None or not wallet.is_owner(caller):
            raise Unauthorized(
                f"Only owners of {wallet.address} can revoke its session keys",
                message="Unauthorized: not an owner",
            )

        enabled = await self.detector.is_enabled(wallet.address, self.module_address)
        if not enabled:
            self._deactivate(session)
            logger.info(f"Smart Sessions not enabled on {wallet.address}; session {session.address} revoked locally")
            return Simulated()

        try:
            signer = owner_signer or relayer_signer
            if signer is None:
                raise ValidationError("No owner signing identity available for on-chain revocation")

            intent = TransactionIntent(
                wallet=wallet.address,
                chain_id=wallet.chain_id,
                to=self.module_address,
                data=build_disable_session_call(session.address),
            )
            signatures = await self.orchestrator.prepare_and_sign(wallet, intent, signer)
            result = await self.orchestrator.execute(wallet, signatures, payer)
        except Exception as e:
            logger.warning(
                f"On-chain revocation of {session.address} failed, falling back to local revocation: {e}",
                exc_info=True,
            )
            self._deactivate(session)
            return Simulated(warning=f"On-chain revocation failed: {getattr(e, 'details', str(e))}")

        self._deactivate(session)
        logger.info(f"Session key {session.address} revoked on-chain: {result.tx_hash}")
        return Authoritative(tx_hash=result.tx_hash)

    def _deactivate(self, session: SessionKey) -> None:
        if not self.store.mark_inactive(session.wallet_address, session.address):
            session.mark_inactive()
