"""
Safe multisig relay.

Owners sign, the relayer pays:
- WalletSigner: owner identity bound to one Safe on one chain
- Payer: funded identity that submits execTransaction
- RelayOrchestrator: builds, signs, verifies and submits
- ModuleDetector: read-only permission module check
- SafeGateway / RpcSafeGateway: chain access

Usage:
    from safe_relay.core.safe import (
        RelayOrchestrator,
        TransactionIntent,
        WalletSigner,
        Payer,
    )

    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(safe_address)
    intent = TransactionIntent(wallet=safe_address, chain_id=84532, to=recipient, value=10**15)

    signatures = await orchestrator.prepare_and_sign(
        wallet, intent, WalletSigner(owner_key, safe_address, 84532)
    )
    result = await orchestrator.execute(wallet, signatures, Payer(relayer_key))
"""

from .models import (
    ERC20_TRANSFER_SELECTOR,
    InvalidTransitionError,
    MultisigWallet,
    Operation,
    OwnerSignature,
    RelayTransaction,
    SafeTransaction,
    SignatureSet,
    TransactionIntent,
    TransactionResult,
    TxState,
)
from .signers import Payer, WalletSigner, recover_signer
from .gateway import GatewayFactory, RpcSafeGateway, SafeGateway
from .module_detector import ModuleDetector
from .orchestrator import RelayOrchestrator

__all__ = [
    # Models
    "ERC20_TRANSFER_SELECTOR",
    "InvalidTransitionError",
    "MultisigWallet",
    "Operation",
    "OwnerSignature",
    "RelayTransaction",
    "SafeTransaction",
    "SignatureSet",
    "TransactionIntent",
    "TransactionResult",
    "TxState",
    # Signing
    "Payer",
    "WalletSigner",
    "recover_signer",
    # Chain access
    "GatewayFactory",
    "RpcSafeGateway",
    "SafeGateway",
    "ModuleDetector",
    # Orchestration
    "RelayOrchestrator",
]
