"""
Tests for RelayOrchestrator: signing, threshold enforcement and submission.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from safe_relay.core.errors import (
    ConfirmationTimeout,
    ExecutionFailed,
    InsufficientSignatures,
    InvalidAddress,
    NotAnOwner,
    ValidationError,
)
from safe_relay.core.realtime import Connection
from safe_relay.core.safe import (
    MultisigWallet,
    Payer,
    RelayOrchestrator,
    TransactionIntent,
    WalletSigner,
)
from safe_relay.core.safe.codec import build_add_owner_call
from safe_relay.services.address import normalize_address

from tests.fakes import (
    CHAIN_ID,
    OUTSIDER_KEY,
    OWNER_A,
    OWNER_A_KEY,
    OWNER_B,
    OWNER_B_KEY,
    RECIPIENT,
    RELAYER,
    RELAYER_KEY,
    SAFE,
    FakeSocket,
)


def _transfer(value: int = 10**15) -> TransactionIntent:
    return TransactionIntent(wallet=SAFE, chain_id=CHAIN_ID, to=RECIPIENT, value=value)


def _signer(key: str) -> WalletSigner:
    return WalletSigner(key, SAFE, CHAIN_ID)


@pytest.mark.asyncio
async def test_add_owner_signed_by_owner_paid_by_relayer(gateway):
    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(SAFE)
    assert wallet.owners == (OWNER_A,)
    assert wallet.threshold == 1

    intent = TransactionIntent(
        wallet=SAFE,
        chain_id=CHAIN_ID,
        to=SAFE,
        data=build_add_owner_call(RELAYER, wallet.threshold),
    )
    signatures = await orchestrator.prepare_and_sign(wallet, intent, _signer(OWNER_A_KEY))
    result = await orchestrator.execute(wallet, signatures, Payer(RELAYER_KEY))

    assert result.is_success
    updated = await orchestrator.load_wallet(SAFE)
    assert updated.owners == (OWNER_A, RELAYER)
    assert updated.threshold == 1

    submitted = gateway.submitted[0]
    assert submitted["payer"] == RELAYER
    assert submitted["signers"] == [OWNER_A]


@pytest.mark.asyncio
async def test_execute_below_threshold_never_submits(gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, OWNER_B], threshold=2)
    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(SAFE)

    signatures = await orchestrator.prepare_and_sign(wallet, _transfer(), _signer(OWNER_A_KEY))

    with pytest.raises(InsufficientSignatures) as exc_info:
        await orchestrator.execute(wallet, signatures, Payer(RELAYER_KEY))

    assert exc_info.value.payload["threshold"] == 2
    assert exc_info.value.status_code == 400
    assert gateway.submitted == []


@pytest.mark.asyncio
async def test_execute_rereads_threshold_before_submitting(gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, OWNER_B], threshold=1)
    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(SAFE)
    signatures = await orchestrator.prepare_and_sign(wallet, _transfer(), _signer(OWNER_A_KEY))

    # Threshold raised on-chain while signatures were being collected
    gateway.wallets[normalize_address(SAFE)]["threshold"] = 2

    with pytest.raises(InsufficientSignatures):
        await orchestrator.execute(wallet, signatures, Payer(RELAYER_KEY))
    assert gateway.submitted == []


@pytest.mark.asyncio
async def test_signature_from_removed_owner_is_not_counted(gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, OWNER_B], threshold=1)
    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(SAFE)
    signatures = await orchestrator.prepare_and_sign(wallet, _transfer(), _signer(OWNER_B_KEY))

    gateway.wallets[normalize_address(SAFE)]["owners"] = [OWNER_A]

    with pytest.raises(InsufficientSignatures):
        await orchestrator.execute(wallet, signatures, Payer(RELAYER_KEY))


@pytest.mark.asyncio
async def test_two_owners_produce_combinable_signatures(gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, OWNER_B], threshold=2)
    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(SAFE)
    intent = _transfer()

    signatures = await orchestrator.prepare_and_sign(wallet, intent, _signer(OWNER_A_KEY))
    signatures = await orchestrator.prepare_and_sign(
        wallet, intent, _signer(OWNER_B_KEY), signature_set=signatures
    )
    assert signatures.size == 2

    result = await orchestrator.execute(wallet, signatures, Payer(RELAYER_KEY))
    assert result.is_success
    assert sorted(gateway.submitted[0]["signers"]) == sorted([OWNER_A, OWNER_B])


@pytest.mark.asyncio
async def test_signing_twice_does_not_duplicate_owner(gateway):
    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(SAFE)
    intent = _transfer()

    signatures = await orchestrator.prepare_and_sign(wallet, intent, _signer(OWNER_A_KEY))
    signatures = await orchestrator.prepare_and_sign(
        wallet, intent, _signer(OWNER_A_KEY), signature_set=signatures
    )
    assert signatures.size == 1


@pytest.mark.asyncio
async def test_invalid_destination_fails_before_network_access():
    gateway = MagicMock()
    gateway.chain_id = CHAIN_ID
    gateway.get_nonce = AsyncMock(return_value=0)
    orchestrator = RelayOrchestrator(gateway)
    wallet = MultisigWallet(address=SAFE, chain_id=CHAIN_ID, owners=(OWNER_A,), threshold=1)
    intent = TransactionIntent(wallet=SAFE, chain_id=CHAIN_ID, to="0x1234")

    with pytest.raises(InvalidAddress):
        await orchestrator.prepare_and_sign(wallet, intent, _signer(OWNER_A_KEY))
    gateway.get_nonce.assert_not_awaited()


@pytest.mark.asyncio
async def test_non_owner_signer_rejected_before_network_access():
    gateway = MagicMock()
    gateway.chain_id = CHAIN_ID
    gateway.get_nonce = AsyncMock(return_value=0)
    orchestrator = RelayOrchestrator(gateway)
    wallet = MultisigWallet(address=SAFE, chain_id=CHAIN_ID, owners=(OWNER_A,), threshold=1)

    with pytest.raises(NotAnOwner) as exc_info:
        await orchestrator.prepare_and_sign(wallet, _transfer(), _signer(OUTSIDER_KEY))

    assert exc_info.value.status_code == 403
    gateway.get_nonce.assert_not_awaited()


@pytest.mark.asyncio
async def test_nonce_moved_since_signing_is_rejected(gateway):
    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(SAFE)
    signatures = await orchestrator.prepare_and_sign(wallet, _transfer(), _signer(OWNER_A_KEY))

    gateway.wallets[normalize_address(SAFE)]["nonce"] += 1

    with pytest.raises(ValidationError, match="nonce"):
        await orchestrator.execute(wallet, signatures, Payer(RELAYER_KEY))
    assert gateway.submitted == []


@pytest.mark.asyncio
async def test_revert_surfaces_execution_failed_with_reason(gateway, revert_error):
    gateway.exec_error = revert_error
    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(SAFE)
    signatures = await orchestrator.prepare_and_sign(wallet, _transfer(), _signer(OWNER_A_KEY))

    with pytest.raises(ExecutionFailed) as exc_info:
        await orchestrator.execute(wallet, signatures, Payer(RELAYER_KEY))

    assert exc_info.value.revert_reason == "GS013"
    assert exc_info.value.to_dict()["revertReason"] == "GS013"


@pytest.mark.asyncio
async def test_confirmation_timeout_is_terminal(gateway):
    gateway.receipt_timed_out = True
    orchestrator = RelayOrchestrator(gateway, confirmation_timeout_seconds=1)
    wallet = await orchestrator.load_wallet(SAFE)
    signatures = await orchestrator.prepare_and_sign(wallet, _transfer(), _signer(OWNER_A_KEY))

    with pytest.raises(ConfirmationTimeout) as exc_info:
        await orchestrator.execute(wallet, signatures, Payer(RELAYER_KEY))

    assert exc_info.value.payload["txHash"] == gateway.submitted[0]["tx_hash"]
    assert len(gateway.submitted) == 1


@pytest.mark.asyncio
async def test_add_signature_rejects_mismatched_owner(gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, OWNER_B], threshold=2)
    orchestrator = RelayOrchestrator(gateway)
    wallet = await orchestrator.load_wallet(SAFE)
    signatures = await orchestrator.prepare_and_sign(wallet, _transfer(), _signer(OWNER_A_KEY))
    b_signature = _signer(OWNER_B_KEY).sign_intent(signatures.safe_tx)

    with pytest.raises(ValidationError):
        orchestrator.add_signature(signatures, OWNER_A, b_signature.signature)

    assert orchestrator.add_signature(signatures, OWNER_B, b_signature.signature) is True
    assert signatures.size == 2


@pytest.mark.asyncio
async def test_relay_emits_lifecycle_events(gateway, registry, broadcaster):
    tx_socket, recipient_socket = FakeSocket(), FakeSocket()
    registry.register(Connection.from_query(tx_socket, tx_id="tx-1"))
    registry.register(Connection.from_query(recipient_socket, recipient=RECIPIENT))

    orchestrator = RelayOrchestrator(gateway, broadcaster)
    result = await orchestrator.relay(
        _transfer(),
        [_signer(OWNER_A_KEY)],
        Payer(RELAYER_KEY),
        tx_id="tx-1",
        recipient=RECIPIENT,
        amount=str(10**15),
    )

    assert [e["status"] for e in tx_socket.sent] == ["pending", "signed", "executed"]
    assert tx_socket.sent[-1]["txHash"] == result.tx_hash
    assert "isIncoming" not in tx_socket.sent[-1]
    assert [e["status"] for e in recipient_socket.sent] == ["pending", "signed", "executed"]
    assert all(e["isIncoming"] is True for e in recipient_socket.sent)


@pytest.mark.asyncio
async def test_relay_emits_failed_event_on_revert(gateway, registry, broadcaster, revert_error):
    gateway.exec_error = revert_error
    socket = FakeSocket()
    registry.register(Connection.from_query(socket, tx_id="tx-2"))

    orchestrator = RelayOrchestrator(gateway, broadcaster)
    with pytest.raises(ExecutionFailed):
        await orchestrator.relay(_transfer(), [_signer(OWNER_A_KEY)], Payer(RELAYER_KEY), tx_id="tx-2")

    assert socket.sent[-1]["status"] == "failed"
    assert "GS013" in socket.sent[-1]["message"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "intent",
    [
        TransactionIntent(wallet=SAFE, chain_id=CHAIN_ID, to=RECIPIENT, data="0xzz"),
        TransactionIntent(wallet=SAFE, chain_id=CHAIN_ID, to=RECIPIENT, data="0x123"),
        TransactionIntent(wallet=SAFE, chain_id=CHAIN_ID, to=RECIPIENT, data="1234"),
        TransactionIntent(wallet=SAFE, chain_id=CHAIN_ID, to=RECIPIENT, value=2**256),
    ],
)
async def test_malformed_intent_fails_before_network_access(intent, registry, broadcaster):
    socket = FakeSocket()
    registry.register(Connection.from_query(socket, tx_id="tx-bad"))
    gateway = MagicMock()
    gateway.chain_id = CHAIN_ID
    gateway.get_owners = AsyncMock(return_value=[OWNER_A])
    orchestrator = RelayOrchestrator(gateway, broadcaster)

    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.relay(intent, [_signer(OWNER_A_KEY)], Payer(RELAYER_KEY), tx_id="tx-bad")

    assert exc_info.value.status_code == 400
    gateway.get_owners.assert_not_awaited()
    assert socket.sent == []


@pytest.mark.asyncio
async def test_deploy_wallet_collapses_duplicate_owners(gateway):
    orchestrator = RelayOrchestrator(gateway)

    address, result = await orchestrator.deploy_wallet(
        [OWNER_A, OWNER_A.lower(), RELAYER], 1, Payer(RELAYER_KEY), salt_nonce=99
    )

    assert result.tx_hash == gateway.deployments[0]["tx_hash"]
    wallet = await orchestrator.load_wallet(address)
    assert wallet.owners == (OWNER_A, RELAYER)
    assert wallet.threshold == 1
    assert gateway.deployments[0]["payer"] == RELAYER


@pytest.mark.asyncio
async def test_deploy_wallet_rejects_threshold_above_owner_count(gateway):
    with pytest.raises(ValidationError):
        await RelayOrchestrator(gateway).deploy_wallet([OWNER_A], 2, Payer(RELAYER_KEY), salt_nonce=1)
    assert gateway.deployments == []


@pytest.mark.asyncio
async def test_fund_waits_for_receipt(gateway):
    result = await RelayOrchestrator(gateway).fund(RECIPIENT, 5, Payer(RELAYER_KEY))

    assert result.tx_hash == gateway.transfers[0]["tx_hash"]
    assert gateway.balances[normalize_address(RECIPIENT)] == 5

    gateway.receipt_timed_out = True
    with pytest.raises(ConfirmationTimeout):
        await RelayOrchestrator(gateway).fund(RECIPIENT, 5, Payer(RELAYER_KEY))
