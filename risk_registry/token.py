"""
Fungible token ledger used for reporter stakes.

Balances and allowances live in the registry's state store so that a token
sub-call is committed or discarded together with the operation that made it.
Amounts are uint256 values stored as 32-byte big-endian slots.
"""
import logging

from risk_registry.core import Event
from risk_registry.crypto import generate_hash
from risk_registry.errors import (
    InsufficientAllowanceError,
    TransferFailedError,
)
from risk_registry.utils.encoding import (
    check_uint256,
    uint256_from_bytes,
    uint256_to_bytes,
)

logger = logging.getLogger(__name__)


def _slot(kind: bytes, *parts: bytes) -> bytes:
    """
    Storage slot for a token mapping entry.
    Each part is length-prefixed before hashing, so identities of any
    length and content map to distinct slots.
    """
    encoded = b''.join(len(part).to_bytes(4, 'big') + part for part in parts)
    return b"TOKEN:" + kind + b":" + generate_hash(encoded)


def _balance_key(token: bytes, holder: bytes) -> bytes:
    return _slot(b"BALANCE", token, holder)


def _allowance_key(token: bytes, owner: bytes, spender: bytes) -> bytes:
    return _slot(b"ALLOWANCE", token, owner, spender)


class TokenLedger:
    """
    balanceOf / transfer / transferFrom / approve over one state view.

    ``state`` is anything with ``get_record``/``put_record`` (a StagedState);
    ``emit`` receives Transfer and Approval events.
    """

    def __init__(self, state, emit=None):
        self.state = state
        self.emit = emit or (lambda event: None)

    def balance_of(self, token: bytes, holder: bytes) -> int:
        return uint256_from_bytes(self.state.get_record(_balance_key(token, holder)))

    def allowance(self, token: bytes, owner: bytes, spender: bytes) -> int:
        return uint256_from_bytes(self.state.get_record(_allowance_key(token, owner, spender)))

    def _set_balance(self, token: bytes, holder: bytes, amount: int):
        self.state.put_record(_balance_key(token, holder), uint256_to_bytes(amount, "balance"))

    def _set_allowance(self, token: bytes, owner: bytes, spender: bytes, amount: int):
        self.state.put_record(
            _allowance_key(token, owner, spender), uint256_to_bytes(amount, "allowance")
        )

    def mint(self, token: bytes, to: bytes, amount: int):
        """Credit new tokens to an account."""
        check_uint256(amount, "amount")
        self._set_balance(token, to, self.balance_of(token, to) + amount)
        self.emit(Event("Transfer", (token, b'', to, amount)))

    def approve(self, token: bytes, owner: bytes, spender: bytes, amount: int):
        check_uint256(amount, "amount")
        self._set_allowance(token, owner, spender, amount)
        self.emit(Event("Approval", (token, owner, spender, amount)))

    def transfer(self, token: bytes, sender: bytes, to: bytes, amount: int):
        check_uint256(amount, "amount")

        balance = self.balance_of(token, sender)
        if balance < amount:
            raise TransferFailedError(
                f"Transfer amount exceeds balance: {amount} > {balance}"
            )

        if sender != to:
            self._set_balance(token, sender, balance - amount)
            self._set_balance(token, to, self.balance_of(token, to) + amount)

        self.emit(Event("Transfer", (token, sender, to, amount)))
        logger.debug(f"Token 0x{token.hex()[:8]}: {amount} from 0x{sender.hex()[:8]} to 0x{to.hex()[:8]}")

    def transfer_from(self, token: bytes, spender: bytes, owner: bytes,
                      to: bytes, amount: int):
        """Pull ``amount`` from ``owner`` using ``spender``'s allowance."""
        check_uint256(amount, "amount")

        allowed = self.allowance(token, owner, spender)
        if allowed < amount:
            raise InsufficientAllowanceError(
                f"Insufficient allowance: {allowed} < {amount}"
            )

        self.transfer(token, owner, to, amount)
        self._set_allowance(token, owner, spender, allowed - amount)
