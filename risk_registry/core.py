"""
Signed transaction envelope and emitted notifications.
"""
import time
import msgpack
from dataclasses import dataclass
from typing import Optional
from .crypto import (
    generate_hash,
    public_key_to_address,
    sign,
    verify_signature,
)

SET_AUTHORITY = "SET_AUTHORITY"
UPDATE_STAKE_CONFIGURATION = "UPDATE_STAKE_CONFIGURATION"
UPDATE_REWARD_CONFIGURATION = "UPDATE_REWARD_CONFIGURATION"
CREATE_REPORTER = "CREATE_REPORTER"
UPDATE_REPORTER = "UPDATE_REPORTER"
ACTIVATE_REPORTER = "ACTIVATE_REPORTER"
DEACTIVATE_REPORTER = "DEACTIVATE_REPORTER"
UNSTAKE_REPORTER = "UNSTAKE_REPORTER"

# Required data fields per transaction type
TX_FIELDS = {
    SET_AUTHORITY: ('authority',),
    UPDATE_STAKE_CONFIGURATION: (
        'token', 'unlock_duration', 'validator_stake',
        'tracer_stake', 'publisher_stake', 'authority_stake',
    ),
    UPDATE_REWARD_CONFIGURATION: ('token', 'address_confirmation_reward', 'tracer_reward'),
    CREATE_REPORTER: ('id', 'account', 'role', 'name', 'url'),
    UPDATE_REPORTER: ('id', 'account', 'role', 'name', 'url'),
    ACTIVATE_REPORTER: ('id',),
    DEACTIVATE_REPORTER: ('id',),
    UNSTAKE_REPORTER: ('id',),
}


@dataclass(frozen=True)
class Event:
    """A notification: name plus ordered field values."""
    name: str
    args: tuple = ()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "args": [a.hex() if isinstance(a, bytes) else a for a in self.args],
        }


class Transaction:
    def __init__(self,
                 sender_public_key: str,
                 tx_type: str,
                 data: dict,
                 nonce: int,
                 signature: Optional[bytes] = None,
                 timestamp: Optional[float] = None,
                 chain_id: Optional[int] = 1):
        self.sender_public_key = sender_public_key
        self.tx_type = tx_type
        self.data = data
        self.nonce = nonce
        self.timestamp = timestamp or time.time()
        self.signature = signature
        self.chain_id = chain_id

    @classmethod
    def from_dict(cls, data: dict):
        """Creates a Transaction object from a dictionary."""
        signature = data.get("signature")
        if isinstance(signature, str):
            signature = bytes.fromhex(signature)
        return cls(
            sender_public_key=data["sender_public_key"],
            tx_type=data["tx_type"],
            data=data["data"],
            nonce=data["nonce"],
            signature=signature,
            timestamp=data.get("timestamp"),
            chain_id=data.get("chain_id"),
        )

    def to_dict(self, include_signature=True):
        data = {
            "sender_public_key": self.sender_public_key,
            "tx_type": self.tx_type,
            "data": self.data,
            "nonce": self.nonce,
            "timestamp": self.timestamp,
            "chain_id": self.chain_id,
        }
        if include_signature and self.signature:
            data["signature"] = self.signature
        return data

    def get_signing_data(self) -> bytes:
        """Returns the canonical byte representation for signing."""
        return msgpack.packb(self.to_dict(include_signature=False), use_bin_type=True)

    def sign(self, private_key):
        """Signs the transaction."""
        self.signature = sign(private_key, self.get_signing_data())

    def verify_signature(self):
        """Verifies the transaction's signature."""
        if not self.signature:
            return False
        return verify_signature(
            self.sender_public_key,
            self.signature,
            self.get_signing_data()
        )

    @property
    def sender(self) -> bytes:
        """20-byte identity of the signer."""
        return public_key_to_address(self.sender_public_key)

    @property
    def id(self) -> bytes:
        """The unique hash identifier of the transaction."""
        return generate_hash(self.get_signing_data())

    def validate_basic(self) -> tuple[bool, str]:
        """
        Performs basic validation checks on the transaction.
        Returns (is_valid, error_message)
        """
        if not self.verify_signature():
            return False, "Invalid signature"

        if not isinstance(self.nonce, int) or self.nonce < 0:
            return False, "Nonce must be a non-negative integer"

        # Check timestamp is reasonable (not too far in future)
        if self.timestamp > time.time() + 300:  # 5 minutes tolerance
            return False, "Timestamp too far in future"

        if self.tx_type not in TX_FIELDS:
            return False, f"Unknown transaction type: {self.tx_type}"

        if not isinstance(self.data, dict):
            return False, "Transaction data must be a dict"

        missing = [f for f in TX_FIELDS[self.tx_type] if f not in self.data]
        if missing:
            return False, f"{self.tx_type} requires {', '.join(repr(f) for f in missing)}"

        return True, ""
