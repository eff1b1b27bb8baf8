"""
Signing capabilities.

Authorization and payment are kept apart: a ``WalletSigner`` produces owner
signatures over Safe transactions, a ``Payer`` signs and funds the outer
Ethereum transaction that carries them. The same key may back both, but
they are always two objects.
"""

from __future__ import annotations

from typing import Any, Dict

from eth_account import Account

from ...services.address import same_address
from ..errors import ValidationError
from .codec import safe_tx_typed_data, signable
from .models import OwnerSignature, SafeTransaction


def _key_error(role: str) -> ValidationError:
    return ValidationError(f"Invalid {role} private key")


class WalletSigner:
    """An owner identity bound to one Safe on one chain."""

    def __init__(self, private_key: str, wallet_address: str, chain_id: int):
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise _key_error("signer") from e
        self.wallet_address = wallet_address
        self.chain_id = chain_id

    @property
    def address(self) -> str:
        return self._account.address

    def sign_intent(self, safe_tx: SafeTransaction) -> OwnerSignature:
        intent = safe_tx.intent
        if not same_address(intent.wallet, self.wallet_address) or intent.chain_id != self.chain_id:
            raise ValidationError(
                f"Signer is bound to {self.wallet_address} on chain {self.chain_id}"
            )
        signed = self._account.sign_message(signable(safe_tx_typed_data(safe_tx)))
        return OwnerSignature(owner=self.address, signature="0x" + bytes(signed.signature).hex())

    def __repr__(self) -> str:
        return f"WalletSigner(address={self.address}, wallet={self.wallet_address})"


class Payer:
    """A funded identity that submits and pays for transactions."""

    def __init__(self, private_key: str):
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise _key_error("payer") from e

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: Dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        return "0x" + bytes(signed.raw_transaction).hex()

    def __repr__(self) -> str:
        return f"Payer(address={self.address})"


def recover_signer(typed_data: Dict[str, Any], signature: str) -> str:
    """Recover the address that signed ``typed_data``."""
    try:
        return Account.recover_message(signable(typed_data), signature=signature)
    except Exception as e:
        raise ValidationError(f"Malformed signature: {e}") from e
