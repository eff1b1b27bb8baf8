"""
Tests for the /api/safe relay endpoints.
"""

from unittest.mock import AsyncMock

from eth_account import Account
from fastapi.testclient import TestClient

from safe_relay.api.deps import RelayServices
from safe_relay.config import settings
from safe_relay.core.safe import TransactionIntent
from safe_relay.core.safe.codec import build_erc20_transfer_call, session_intent_typed_data, signable
from safe_relay.main import create_app
from safe_relay.services.address import normalize_address
from safe_relay.services.storage import WalletBlobStore

from tests.fakes import (
    CHAIN_ID,
    OUTSIDER,
    OWNER_A,
    OWNER_A_KEY,
    OWNER_B,
    RECIPIENT,
    RELAYER,
    SAFE,
    FakeGatewayFactory,
)

TOKEN = "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"


def _base(**extra):
    return {"safeAddress": SAFE, "chainId": CHAIN_ID, **extra}


def test_get_owners(client):
    response = client.post("/api/safe/get-owners", json=_base())

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "owners": [OWNER_A],
        "threshold": 1,
        "safeAddress": SAFE,
    }


def test_balance(client):
    response = client.post("/api/safe/balance", json=_base())
    assert response.json()["balance"] == str(10**18)


def test_invalid_safe_address_is_400(client):
    response = client.post("/api/safe/get-owners", json={"safeAddress": "0x1234", "chainId": CHAIN_ID})

    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "validation"
    assert "safeAddress" in body["details"]


def test_missing_field_is_400(client):
    response = client.post("/api/safe/get-owners", json={"safeAddress": SAFE})

    assert response.status_code == 400
    assert "chainId" in response.json()["details"]


def test_unsupported_chain_is_400(client):
    response = client.post("/api/safe/get-owners", json={"safeAddress": SAFE, "chainId": 1})
    assert response.status_code == 400


def test_add_relayer_as_owner(client, gateway):
    response = client.post("/api/safe/add-owner", json=_base(userPrivateKey=OWNER_A_KEY))

    assert response.status_code == 200
    body = response.json()
    assert body["owners"] == [OWNER_A, RELAYER]
    assert body["threshold"] == 1
    assert gateway.submitted[0]["payer"] == RELAYER

    again = client.post("/api/safe/add-owner", json=_base(userPrivateKey=OWNER_A_KEY))
    assert again.json()["message"] == "Relayer is already an owner"
    assert len(gateway.submitted) == 1


def test_add_owner_without_relayer_key_is_500(gateway, tmp_path):
    services = RelayServices(gateways=FakeGatewayFactory(gateway), blob_store=WalletBlobStore(tmp_path))
    response = TestClient(create_app(services)).post(
        "/api/safe/add-owner", json=_base(userPrivateKey=OWNER_A_KEY)
    )

    assert response.status_code == 500
    assert response.json()["error"] == "Server configuration error"


def test_execute_below_threshold_is_400(client, gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, OWNER_B], threshold=2)

    response = client.post(
        "/api/safe/execute-tx",
        json=_base(to=RECIPIENT, value="1000", userPrivateKey=OWNER_A_KEY),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "insufficient_signatures"
    assert body["threshold"] == 2
    assert gateway.submitted == []


def test_send_tx_by_owner(client, gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, RELAYER], threshold=1)

    response = client.post(
        "/api/safe/send-tx",
        json=_base(userAddress=OWNER_A, to=RECIPIENT, amount=str(10**15), txId="tx-1"),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["blockNumber"] == 7
    assert body["sessionKeyUsed"] is False
    assert gateway.balances[normalize_address(SAFE)] == 10**18 - 10**15


def test_send_tx_rejects_non_owner(client, gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, RELAYER], threshold=1)

    response = client.post(
        "/api/safe/send-tx",
        json=_base(userAddress=OUTSIDER, to=RECIPIENT, amount="1"),
    )

    assert response.status_code == 403
    assert gateway.submitted == []


def test_send_tx_insufficient_balance(client, gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, RELAYER], threshold=1)

    response = client.post(
        "/api/safe/send-tx",
        json=_base(userAddress=OWNER_A, to=RECIPIENT, amount=str(10**19)),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Insufficient balance"
    assert body["required"] == str(10**19)


def test_send_tx_zero_amount_is_400(client):
    response = client.post(
        "/api/safe/send-tx",
        json=_base(userAddress=OWNER_A, to=RECIPIENT, amount="0"),
    )
    assert response.status_code == 400


def test_session_key_flow(client, gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, RELAYER], threshold=1)

    created = client.post(
        "/api/safe/create-session-key",
        json=_base(userAddress=OWNER_A, spendingLimit=str(10**16)),
    )
    assert created.status_code == 200
    session = created.json()["sessionKey"]
    assert session["permissions"]["spendingLimit"] == str(10**16)
    assert session["expiresAt"] > 0

    intent = TransactionIntent(wallet=SAFE, chain_id=CHAIN_ID, to=RECIPIENT, value=10**15)
    typed = session_intent_typed_data(intent, 0, session["permissions"]["validUntil"])
    signature = "0x" + bytes(Account.from_key(session["privateKey"]).sign_message(signable(typed)).signature).hex()

    sent = client.post(
        "/api/safe/send-tx",
        json=_base(
            userAddress=OWNER_A,
            to=RECIPIENT,
            amount=str(10**15),
            sessionKeyAddress=session["address"],
            sessionSignature=signature,
        ),
    )
    assert sent.status_code == 200
    assert sent.json()["sessionKeyUsed"] is True

    over_limit = client.post(
        "/api/safe/send-tx",
        json=_base(
            userAddress=OWNER_A,
            to=RECIPIENT,
            amount=str(10**17),
            sessionKeyAddress=session["address"],
            sessionSignature=signature,
        ),
    )
    # Signature was made for a different amount
    assert over_limit.status_code == 401

    revoked = client.post(
        "/api/safe/revoke-session-key",
        json=_base(userAddress=OWNER_A, sessionKeyAddress=session["address"]),
    )
    assert revoked.status_code == 200
    assert revoked.json()["onChain"] is False
    assert "warning" not in revoked.json()


def test_create_session_key_for_non_owner_is_403(client):
    response = client.post("/api/safe/create-session-key", json=_base(userAddress=OUTSIDER))
    assert response.status_code == 403


def test_revoke_by_non_owner_is_403(client):
    response = client.post(
        "/api/safe/revoke-session-key",
        json=_base(userAddress=OUTSIDER, sessionKeyAddress=Account.create().address),
    )
    assert response.status_code == 403


def test_execute_with_non_hex_data_is_400(client, gateway):
    response = client.post(
        "/api/safe/execute-tx",
        json=_base(to=RECIPIENT, data="0xzz", userPrivateKey=OWNER_A_KEY),
    )

    assert response.status_code == 400
    assert response.json()["kind"] == "validation"
    assert "data" in response.json()["details"]
    assert gateway.submitted == []


def test_execute_with_value_above_uint256_is_400(client, gateway):
    response = client.post(
        "/api/safe/execute-tx",
        json=_base(to=RECIPIENT, value=str(2**256), userPrivateKey=OWNER_A_KEY),
    )

    assert response.status_code == 400
    assert "uint256" in response.json()["details"]
    assert gateway.submitted == []


def test_send_tx_with_odd_length_data_never_reaches_the_chain(client, gateway):
    gateway.get_balance = AsyncMock(return_value=10**18)

    response = client.post(
        "/api/safe/send-tx",
        json=_base(userAddress=OWNER_A, to=RECIPIENT, amount="1", data="0x123"),
    )

    assert response.status_code == 400
    assert response.json()["kind"] == "validation"
    gateway.get_balance.assert_not_awaited()


def test_send_tx_token_transfer(client, gateway):
    gateway.add_wallet(SAFE, owners=[OWNER_A, RELAYER], threshold=1)
    gateway.get_balance = AsyncMock(return_value=0)

    response = client.post(
        "/api/safe/send-tx",
        json=_base(userAddress=OWNER_A, to=RECIPIENT, amount="5", tokenAddress=TOKEN),
    )

    assert response.status_code == 200
    intent = gateway.submitted[0]["safe_tx"].intent
    assert intent.to.lower() == TOKEN.lower()
    assert intent.value == 0
    assert intent.data == build_erc20_transfer_call(RECIPIENT, 5)
    gateway.get_balance.assert_not_awaited()


def test_send_tx_token_transfer_rejects_extra_data(client, gateway):
    response = client.post(
        "/api/safe/send-tx",
        json=_base(userAddress=OWNER_A, to=RECIPIENT, amount="5", tokenAddress=TOKEN, data="0x"),
    )
    assert response.status_code == 400


def test_revoke_with_owner_key_is_paid_by_owner(gateway, tmp_path):
    gateway.add_wallet(SAFE, owners=[OWNER_A], threshold=1, modules=[settings.smart_sessions_module])
    # No relayer key configured: the owner covers the whole revocation.
    services = RelayServices(gateways=FakeGatewayFactory(gateway), blob_store=WalletBlobStore(tmp_path))
    session_address = Account.create().address

    response = TestClient(create_app(services)).post(
        "/api/safe/revoke-session-key",
        json=_base(userAddress=OWNER_A, sessionKeyAddress=session_address, userPrivateKey=OWNER_A_KEY),
    )

    assert response.status_code == 200
    assert response.json()["onChain"] is True
    assert gateway.submitted[0]["payer"] == OWNER_A
    assert gateway.disabled_sessions == [session_address]


def test_list_session_keys(client, gateway):
    created = client.post("/api/safe/create-session-key", json=_base(userAddress=OWNER_A))
    address = created.json()["sessionKey"]["address"]

    listed = client.post("/api/safe/list-session-keys", json=_base())
    assert listed.status_code == 200
    keys = listed.json()["sessionKeys"]
    assert [k["address"] for k in keys] == [address]
    assert keys[0]["active"] is True
    assert keys[0]["createdBy"] == OWNER_A
    assert "privateKey" not in keys[0]

    client.post(
        "/api/safe/revoke-session-key",
        json=_base(userAddress=OWNER_A, sessionKeyAddress=address),
    )
    assert client.post("/api/safe/list-session-keys", json=_base(activeOnly=True)).json()["sessionKeys"] == []
    revoked = client.post("/api/safe/list-session-keys", json=_base()).json()["sessionKeys"]
    assert revoked[0]["active"] is False
    assert revoked[0]["revokedAt"] is not None


def _deploy(client, **extra):
    return client.post("/api/safe/deploy-safe", json={"userAddress": OWNER_A, "chainId": CHAIN_ID, **extra})


def test_deploy_safe_owned_by_user_and_relayer_and_funded(client, gateway):
    response = _deploy(client, saltNonce=7)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Safe deployed and funded successfully"
    assert body["txHash"] == gateway.deployments[0]["tx_hash"]
    assert body["fundingTxHash"] == gateway.transfers[0]["tx_hash"]

    safe_address = body["safeAddress"]
    owners = client.post("/api/safe/get-owners", json={"safeAddress": safe_address, "chainId": CHAIN_ID}).json()
    assert owners["owners"] == [OWNER_A, RELAYER]
    assert owners["threshold"] == 1
    assert gateway.deployments[0]["payer"] == RELAYER
    assert gateway.balances[normalize_address(safe_address)] == settings.deploy_funding_wei


def test_deploy_safe_without_funding(client, gateway, monkeypatch):
    monkeypatch.setattr(settings, "deploy_funding_wei", 0)

    body = _deploy(client, saltNonce=8).json()

    assert "fundingTxHash" not in body
    assert body["message"] == "Safe deployed successfully"
    assert gateway.transfers == []


def test_deploy_safe_reused_salt_is_500(client, gateway):
    assert _deploy(client, saltNonce=9).status_code == 200

    response = _deploy(client, saltNonce=9)
    assert response.status_code == 500
    assert len(gateway.deployments) == 1


def test_deploy_safe_invalid_user_address_is_400(client, gateway):
    response = client.post("/api/safe/deploy-safe", json={"userAddress": "0xabc", "chainId": CHAIN_ID})

    assert response.status_code == 400
    assert gateway.deployments == []
