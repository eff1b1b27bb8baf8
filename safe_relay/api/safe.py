import logging
import time
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..config import settings
from ..core.errors import NotAnOwner, ValidationError
from ..core.safe import OwnerSignature, Payer, TransactionIntent, WalletSigner
from ..core.safe.codec import build_add_owner_call, build_erc20_transfer_call
from ..core.wallet import SessionKey, SessionPolicy
from ..services.address import require_address
from .deps import RelayServices, get_services, optional_signer, parse_wei

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/safe")

Wei = Union[int, str]


class SafeRequest(BaseModel):
    safeAddress: str = Field(..., description="Safe wallet address")
    chainId: int = Field(..., description="Chain ID the Safe is deployed on")


class AddOwnerRequest(SafeRequest):
    userPrivateKey: str = Field(..., description="Private key of an existing owner; signs, never pays")


class SignatureInput(BaseModel):
    owner: str
    signature: str


class ExecuteTxRequest(SafeRequest):
    to: str = Field(..., description="Call destination")
    value: Wei = Field("0", description="Native value in wei")
    data: str = Field("0x", description="Call data")
    userPrivateKey: str = Field(..., description="Owner key that signs the transaction")
    signatures: List[SignatureInput] = Field(default_factory=list, description="Pre-collected owner signatures")


class SendTxRequest(SafeRequest):
    userAddress: str = Field(..., description="Owner requesting the transfer")
    to: str = Field(..., description="Recipient")
    amount: Wei = Field(..., description="Amount in wei, or in token base units with tokenAddress")
    data: Optional[str] = Field(default=None, description="Optional call data")
    tokenAddress: Optional[str] = Field(default=None, description="ERC-20 token to transfer instead of native value")
    sessionKeyAddress: Optional[str] = None
    sessionSignature: Optional[str] = Field(default=None, description="Session key signature over the SessionIntent")
    validAfter: Optional[int] = None
    validUntil: Optional[int] = None
    txId: Optional[str] = Field(default=None, description="Client transaction id for status notifications")


class CreateSessionKeyRequest(SafeRequest):
    userAddress: str
    spendingLimit: Optional[Wei] = Field(default=None, description="Per-transaction limit in wei")
    allowedTokens: Optional[List[str]] = None
    validForHours: Optional[int] = Field(default=None, ge=1)


class RevokeSessionKeyRequest(SafeRequest):
    userAddress: str
    sessionKeyAddress: str
    userPrivateKey: Optional[str] = Field(default=None, description="Owner key; proves ownership, signs and pays")


class ListSessionKeysRequest(SafeRequest):
    activeOnly: bool = False


class DeploySafeRequest(BaseModel):
    userAddress: str = Field(..., description="Owner of the new Safe, next to the relayer")
    chainId: int
    saltNonce: Optional[Wei] = Field(default=None, description="Proxy salt; defaults to the current time in ms")


@router.post("/deploy-safe")
async def deploy_safe(
    request: DeploySafeRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Deploy a Safe owned by the user and the relayer with threshold 1.

    The relayer pays for the deployment, then funds the new wallet with
    ``deploy_funding_wei`` unless that is 0.
    """
    user_address = require_address(request.userAddress, "userAddress")
    salt_nonce = parse_wei(request.saltNonce, "saltNonce", default=int(time.time() * 1000))
    payer = services.relayer_payer()
    orchestrator = services.orchestrator(request.chainId)

    safe_address, result = await orchestrator.deploy_wallet(
        [user_address, payer.address], 1, payer, salt_nonce=salt_nonce
    )
    response: Dict[str, Any] = {
        "success": True,
        "safeAddress": safe_address,
        "txHash": result.tx_hash,
        "message": "Safe deployed successfully",
    }

    if settings.deploy_funding_wei > 0:
        funding = await orchestrator.fund(safe_address, settings.deploy_funding_wei, payer)
        response["fundingTxHash"] = funding.tx_hash
        response["message"] = "Safe deployed and funded successfully"
    return response


@router.post("/get-owners")
async def get_owners(
    request: SafeRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    wallet = await services.orchestrator(request.chainId).load_wallet(request.safeAddress)
    return {
        "success": True,
        "owners": list(wallet.owners),
        "threshold": wallet.threshold,
        "safeAddress": wallet.address,
    }


@router.post("/balance")
async def get_balance(
    request: SafeRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    safe_address = require_address(request.safeAddress, "safeAddress")
    balance = await services.gateways.for_chain(request.chainId).get_balance(safe_address)
    return {
        "success": True,
        "balance": str(balance),
        "safeAddress": safe_address,
        "chainId": request.chainId,
    }


@router.post("/add-owner")
async def add_relayer_as_owner(
    request: AddOwnerRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    """Add the relayer as an owner, keeping the threshold. The user signs, the relayer pays."""
    safe_address = require_address(request.safeAddress, "safeAddress")
    payer = services.relayer_payer()
    user_signer = WalletSigner(request.userPrivateKey, safe_address, request.chainId)

    orchestrator = services.orchestrator(request.chainId)
    wallet = await orchestrator.load_wallet(safe_address)

    if wallet.is_owner(payer.address):
        return {
            "success": True,
            "message": "Relayer is already an owner",
            "owners": list(wallet.owners),
            "threshold": wallet.threshold,
        }

    intent = TransactionIntent(
        wallet=safe_address,
        chain_id=request.chainId,
        to=safe_address,
        data=build_add_owner_call(payer.address, wallet.threshold),
    )
    signatures = await orchestrator.prepare_and_sign(wallet, intent, user_signer)
    result = await orchestrator.execute(wallet, signatures, payer)

    updated = await orchestrator.load_wallet(safe_address)
    logger.info(f"Relayer {payer.address} added as owner of {safe_address}: {result.tx_hash}")
    return {
        "success": True,
        "txHash": result.tx_hash,
        "owners": list(updated.owners),
        "threshold": updated.threshold,
    }


@router.post("/execute-tx")
async def execute_transaction(
    request: ExecuteTxRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    """Owner-signed, relayer-paid execution of an arbitrary call."""
    safe_address = require_address(request.safeAddress, "safeAddress")
    intent = TransactionIntent(
        wallet=safe_address,
        chain_id=request.chainId,
        to=require_address(request.to, "to"),
        value=parse_wei(request.value, "value"),
        data=request.data or "0x",
    )
    user_signer = WalletSigner(request.userPrivateKey, safe_address, request.chainId)
    extra = [OwnerSignature(owner=s.owner, signature=s.signature) for s in request.signatures]
    payer = services.relayer_payer()

    result = await services.orchestrator(request.chainId).relay(
        intent, [user_signer], payer, extra_signatures=extra
    )
    return {"success": True, "txHash": result.tx_hash}


@router.post("/send-tx")
async def send_transaction(
    request: SendTxRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Gasless transfer from a Safe. The relayer signs as an owner and pays.

    With a session key the request must carry that key's signature over
    the intent, and the intent must fit the key's policy.
    """
    user_address = require_address(request.userAddress, "userAddress")
    safe_address = require_address(request.safeAddress, "safeAddress")
    to = require_address(request.to, "to")
    amount = parse_wei(request.amount, "amount")
    if amount <= 0:
        raise ValidationError("Amount must be greater than 0")

    if request.tokenAddress:
        if request.data:
            raise ValidationError("data cannot be combined with tokenAddress")
        intent = TransactionIntent(
            wallet=safe_address,
            chain_id=request.chainId,
            to=require_address(request.tokenAddress, "tokenAddress"),
            data=build_erc20_transfer_call(to, amount),
        )
    else:
        intent = TransactionIntent(
            wallet=safe_address,
            chain_id=request.chainId,
            to=to,
            value=amount,
            data=request.data or "0x",
        )
    orchestrator = services.orchestrator(request.chainId)
    orchestrator.validate_intent(intent)

    payer = services.relayer_payer()
    relayer_signer = services.relayer_signer(safe_address, request.chainId)

    # Token balances are left to the token contract.
    if not intent.is_token_transfer:
        balance = await orchestrator.gateway.get_balance(safe_address)
        if balance < amount:
            raise ValidationError(
                f"Safe balance {balance} is below the requested amount {amount}",
                message="Insufficient balance",
                payload={"balance": str(balance), "required": str(amount)},
            )

    session_used = False
    if request.sessionKeyAddress:
        await services.authority(request.chainId).authorize(
            request.sessionKeyAddress,
            intent,
            request.sessionSignature,
            valid_after=request.validAfter,
            valid_until=request.validUntil,
        )
        session_used = True
    else:
        wallet = await orchestrator.load_wallet(safe_address)
        if not wallet.is_owner(user_address):
            raise NotAnOwner(
                f"{user_address} is not an owner of {safe_address}",
                payload={"owners": list(wallet.owners)},
            )

    result = await orchestrator.relay(
        intent,
        [relayer_signer],
        payer,
        tx_id=request.txId,
        recipient=to,
        amount=str(amount),
    )
    return {
        "success": True,
        "txHash": result.tx_hash,
        "blockNumber": result.block_number,
        "sessionKeyUsed": session_used,
    }


@router.post("/create-session-key")
async def create_session_key(
    request: CreateSessionKeyRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    user_address = require_address(request.userAddress, "userAddress")
    spending_limit = (
        parse_wei(request.spendingLimit, "spendingLimit")
        if request.spendingLimit is not None else None
    )
    authority = services.authority(request.chainId)
    wallet = await authority.orchestrator.load_wallet(request.safeAddress)

    session, private_key = authority.create_session_key(
        wallet,
        user_address,
        spending_limit=spending_limit,
        allowed_tokens=request.allowedTokens,
        ttl_hours=request.validForHours,
    )
    return {
        "success": True,
        "sessionKey": {
            "address": session.address,
            "privateKey": private_key,
            "expiresAt": int(session.expires_at.timestamp() * 1000),
            "permissions": session.policy.to_dict(),
        },
    }


@router.post("/revoke-session-key")
async def revoke_session_key(
    request: RevokeSessionKeyRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    user_address = require_address(request.userAddress, "userAddress")
    safe_address = require_address(request.safeAddress, "safeAddress")
    session_address = require_address(request.sessionKeyAddress, "sessionKeyAddress")
    owner_signer = optional_signer(request.userPrivateKey, safe_address, request.chainId)
    if owner_signer is not None:
        # The owner signs and pays for its own revocation.
        payer = Payer(request.userPrivateKey)
        relayer_signer = None
    else:
        payer = services.relayer_payer()
        relayer_signer = services.relayer_signer(safe_address, request.chainId)

    session = services.session_store.get(safe_address, session_address)
    if session is None:
        # Issued elsewhere; revocation still applies to the module.
        session = SessionKey(
            address=session_address,
            wallet_address=safe_address,
            chain_id=request.chainId,
            policy=SessionPolicy(spending_limit=0),
        )

    result = await services.authority(request.chainId).revoke(
        session,
        payer,
        caller=user_address,
        owner_signer=owner_signer,
        relayer_signer=relayer_signer,
    )
    return result.to_response()


@router.post("/list-session-keys")
async def list_session_keys(
    request: ListSessionKeysRequest,
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    safe_address = require_address(request.safeAddress, "safeAddress")
    sessions = [
        s for s in services.session_store.list_for_wallet(safe_address, active_only=request.activeOnly)
        if s.chain_id == request.chainId
    ]
    return {
        "success": True,
        "safeAddress": safe_address,
        "sessionKeys": [s.to_dict() for s in sessions],
    }
