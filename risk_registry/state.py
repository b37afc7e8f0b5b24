"""
Registry state records.
Each record converts to a plain dict for msgpack storage and back.
"""
import uuid
from enum import IntEnum

from risk_registry.codec import ZERO_ADDRESS
from risk_registry.errors import ValidationError
from risk_registry.utils.encoding import check_uint256, uint256_from_bytes, uint256_to_bytes


class ReporterRole(IntEnum):
    VALIDATOR = 0
    TRACER = 1
    PUBLISHER = 2
    AUTHORITY = 3

    @classmethod
    def parse(cls, value) -> 'ReporterRole':
        """Accept a role member, its integer value or its (case-insensitive) name."""
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValidationError(f"Unknown reporter role: {value!r}") from None
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown reporter role: {value!r}") from None


class ReporterStatus(IntEnum):
    INACTIVE = 0
    ACTIVE = 1
    UNSTAKING = 2


def parse_reporter_id(value) -> uuid.UUID:
    """Normalize a 128-bit reporter id given as UUID, int or UUID text."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        if isinstance(value, int):
            return uuid.UUID(int=value)
        if isinstance(value, (bytes, bytearray)):
            return uuid.UUID(bytes=bytes(value))
        return uuid.UUID(str(value))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid reporter id {value!r}: {e}") from e


def _amount(data: dict, field: str) -> int:
    """Stored records hold 32-byte amounts, callers pass ints."""
    value = data.get(field, 0)
    if isinstance(value, (bytes, bytearray)):
        return uint256_from_bytes(value)
    return check_uint256(value, field)


class StakeConfiguration:
    """Token and per-role stake amounts required to activate a reporter."""

    AMOUNT_FIELDS = ('unlock_duration', 'validator_stake', 'tracer_stake',
                     'publisher_stake', 'authority_stake')

    def __init__(self, data: dict = None):
        if data is None:
            data = {}

        self.token = bytes(data.get('token', ZERO_ADDRESS))
        self.unlock_duration = _amount(data, 'unlock_duration')
        self.validator_stake = _amount(data, 'validator_stake')
        self.tracer_stake = _amount(data, 'tracer_stake')
        self.publisher_stake = _amount(data, 'publisher_stake')
        self.authority_stake = _amount(data, 'authority_stake')

    def to_dict(self) -> dict:
        record = {'token': self.token}
        for field in self.AMOUNT_FIELDS:
            record[field] = uint256_to_bytes(getattr(self, field), field)
        return record

    def as_tuple(self) -> tuple:
        return (
            self.token,
            self.unlock_duration,
            self.validator_stake,
            self.tracer_stake,
            self.publisher_stake,
            self.authority_stake,
        )

    def stake_for(self, role: ReporterRole) -> int:
        """Stake amount required for a role."""
        return {
            ReporterRole.VALIDATOR: self.validator_stake,
            ReporterRole.TRACER: self.tracer_stake,
            ReporterRole.PUBLISHER: self.publisher_stake,
            ReporterRole.AUTHORITY: self.authority_stake,
        }[ReporterRole(role)]

    def __eq__(self, other) -> bool:
        return isinstance(other, StakeConfiguration) and self.as_tuple() == other.as_tuple()

    def __repr__(self) -> str:
        return (
            f"StakeConfiguration(token=0x{self.token.hex()}, "
            f"unlock_duration={self.unlock_duration}, "
            f"stakes={self.as_tuple()[2:]})"
        )


class RewardConfiguration:
    """Reward token and the two payout rates."""

    def __init__(self, data: dict = None):
        if data is None:
            data = {}

        self.token = bytes(data.get('token', ZERO_ADDRESS))
        self.address_confirmation_reward = _amount(data, 'address_confirmation_reward')
        self.tracer_reward = _amount(data, 'tracer_reward')

    def to_dict(self) -> dict:
        return {
            'token': self.token,
            'address_confirmation_reward': uint256_to_bytes(self.address_confirmation_reward),
            'tracer_reward': uint256_to_bytes(self.tracer_reward),
        }

    def as_tuple(self) -> tuple:
        return (self.token, self.address_confirmation_reward, self.tracer_reward)

    def __eq__(self, other) -> bool:
        return isinstance(other, RewardConfiguration) and self.as_tuple() == other.as_tuple()

    def __repr__(self) -> str:
        return (
            f"RewardConfiguration(token=0x{self.token.hex()}, "
            f"rates={self.as_tuple()[1:]})"
        )


class Governance:
    """The two privileged identities."""

    def __init__(self, owner: bytes, authority: bytes):
        self.owner = owner
        self.authority = authority

    def to_dict(self):
        return {"owner": self.owner, "authority": self.authority}

    @staticmethod
    def from_dict(d):
        return Governance(bytes(d["owner"]), bytes(d["authority"]))


class Reporter:
    __slots__ = ('id', 'account', 'name', 'url', 'role', 'status',
                 'staked_amount', 'unlock_timestamp')

    def __init__(self, id: uuid.UUID, account: bytes, name: str, url: str,
                 role: ReporterRole, status: ReporterStatus = ReporterStatus.INACTIVE,
                 staked_amount: int = 0, unlock_timestamp: int = 0):
        self.id = id
        self.account = account
        self.name = name
        self.url = url
        self.role = ReporterRole(role)
        self.status = ReporterStatus(status)
        self.staked_amount = staked_amount
        self.unlock_timestamp = unlock_timestamp

    def reset_stake(self):
        self.status = ReporterStatus.INACTIVE
        self.staked_amount = 0
        self.unlock_timestamp = 0

    def as_tuple(self) -> tuple:
        """Field order of the getReporter query."""
        return (
            self.id,
            self.account,
            self.name,
            self.url,
            self.role,
            self.status,
            self.staked_amount,
            self.unlock_timestamp,
        )

    def to_dict(self):
        return {
            "id": self.id.bytes,
            "account": self.account,
            "name": self.name,
            "url": self.url,
            "role": int(self.role),
            "status": int(self.status),
            "staked_amount": uint256_to_bytes(self.staked_amount, "staked amount"),
            "unlock_timestamp": uint256_to_bytes(self.unlock_timestamp, "unlock timestamp"),
        }

    @staticmethod
    def from_dict(d):
        return Reporter(
            id=uuid.UUID(bytes=bytes(d["id"])),
            account=bytes(d["account"]),
            name=d["name"],
            url=d["url"],
            role=d["role"],
            status=d["status"],
            staked_amount=uint256_from_bytes(d["staked_amount"]),
            unlock_timestamp=uint256_from_bytes(d["unlock_timestamp"]),
        )

    def __eq__(self, other) -> bool:
        return isinstance(other, Reporter) and self.as_tuple() == other.as_tuple()

    def __repr__(self) -> str:
        return (
            f"Reporter(id={self.id}, account=0x{self.account.hex()}, "
            f"role={self.role.name}, status={self.status.name}, "
            f"staked={self.staked_amount})"
        )
