"""
Cross-chain reporter registry.

Governance (owner / authority), stake and reward configuration, and the
reporter lifecycle:

    Inactive --activate--> Active --deactivate--> Unstaking --unstake--> Inactive

Every mutating operation runs against a staged write set. It is committed
in a single batch when the operation succeeds; on any error nothing is
written and no notification is published.
"""
import logging
import time
import uuid
from collections import deque
from contextlib import contextmanager

from risk_registry.codec import NetworkSchema, address_width, encode_address
from risk_registry.core import (
    Event,
    Transaction,
    SET_AUTHORITY,
    UPDATE_STAKE_CONFIGURATION,
    UPDATE_REWARD_CONFIGURATION,
    CREATE_REPORTER,
    UPDATE_REPORTER,
    ACTIVATE_REPORTER,
    DEACTIVATE_REPORTER,
    UNSTAKE_REPORTER,
)
from risk_registry.crypto import generate_hash
from risk_registry.db import DB, StagedState
from risk_registry.errors import (
    AlreadyActiveError,
    AlreadyInitializedError,
    DuplicateIdError,
    InvalidAddressFormatError,
    InvalidStateTransitionError,
    NotFoundError,
    NotInitializedError,
    TransferFailedError,
    UnauthorizedError,
    ValidationError,
)
from risk_registry.monitoring import Monitor
from risk_registry.pda import ProgramAddresses, to_key
from risk_registry.state import (
    Governance,
    Reporter,
    ReporterRole,
    ReporterStatus,
    RewardConfiguration,
    StakeConfiguration,
    parse_reporter_id,
)
from risk_registry.token import TokenLedger

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Reserved addresses
GOVERNANCE_ADDRESS = b'\x00' * 19 + b'\x01'
STAKE_CONFIG_ADDRESS = b'\x00' * 19 + b'\x02'
REWARD_CONFIG_ADDRESS = b'\x00' * 19 + b'\x03'
REPORTER_INDEX_ADDRESS = b'\x00' * 19 + b'\x04'

# Storage slot of the id => Reporter mapping
REPORTERS_SLOT = 5

MAX_NAME_LENGTH = 256
MAX_URL_LENGTH = 2048

# Committed notifications kept in memory for inspection
EVENT_LOG_SIZE = 1000


def reporter_slot(reporter_id: uuid.UUID) -> bytes:
    """keccak256(pad32(id) || pad32(slot)), the account-model mapping slot."""
    return generate_hash(
        reporter_id.int.to_bytes(32, 'big') + REPORTERS_SLOT.to_bytes(32, 'big')
    )


def _nonce_key(address: bytes) -> bytes:
    return b"NONCE:" + address


def _tx_amount(data: dict, field: str):
    """Amounts beyond msgpack's 64-bit integers travel as decimal strings."""
    value = data[field]
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return value


class Registry:
    def __init__(self, db: DB, program_id, community,
                 schema=NetworkSchema.ETHEREUM, chain_id: int = 1,
                 clock=time.time, monitor: Monitor = None,
                 event_log_size: int = EVENT_LOG_SIZE):
        self.db = db
        self.schema = NetworkSchema(schema)
        self.chain_id = chain_id
        self.clock = clock
        self.monitor = monitor

        self.pda = ProgramAddresses(program_id)
        self.community = to_key(community)

        # Custody account for reporter stakes
        self.stash_address, self.stash_bump = \
            self.pda.find_community_token_signer_address(self.community)

        self.events: deque[Event] = deque(maxlen=event_log_size)
        self._state: StagedState | None = None
        self._pending_events: list[Event] = []
        # (old status or None, new status) per reporter touched in the open scope
        self._pending_moves: list[tuple] = []

        if self.monitor:
            self.monitor.update(self.get_reporters(0, self.get_reporter_count()))

    @classmethod
    def from_config(cls, config, clock=time.time) -> 'Registry':
        """Open the state store and monitor described by a Config."""
        db = DB(
            config.database.path,
            write_buffer_size=config.database.write_buffer_size,
            max_open_files=config.database.max_open_files,
            compression=config.database.compression,
        )

        monitor = None
        if config.monitoring.enabled:
            monitor = Monitor(host=config.monitoring.host, port=config.monitoring.port)
            monitor.start_server()

        return cls(
            db=db,
            program_id=config.registry.program_id,
            community=config.registry.community,
            schema=config.registry.schema,
            chain_id=config.registry.chain_id,
            clock=clock,
            monitor=monitor,
        )

    def close(self):
        if self.monitor:
            self.monitor.stop_server()
        self.db.close()

    # ==========================================================================
    # TRANSACTION SCOPE
    # ==========================================================================

    @contextmanager
    def _transaction(self):
        """
        Stage writes and notifications for one operation.
        Nested scopes join the outermost one.
        """
        if self._state is not None:
            yield self._state
            return

        state = self.db.stage()
        self._state = state
        self._pending_events = []
        self._pending_moves = []
        try:
            yield state
        except Exception:
            state.discard()
            raise
        else:
            state.commit()
            self._publish(self._pending_events, self._pending_moves)
        finally:
            self._pending_events = []
            self._pending_moves = []
            self._state = None

    def _view(self) -> StagedState:
        """Read-only view: the open write set, or the committed store."""
        return self._state if self._state is not None else self.db.stage()

    def _emit(self, event: Event):
        self._pending_events.append(event)

    def _move(self, old_status, new_status):
        self._pending_moves.append((old_status, new_status))

    def _publish(self, events: list[Event], moves: list[tuple]):
        for event in events:
            self.events.append(event)
            logger.info(f"{event.name}{tuple(event.to_dict()['args'])}")
            if self.monitor:
                self.monitor.record_event(event.name)

        if self.monitor:
            for old_status, new_status in moves:
                self.monitor.move_reporter(old_status, new_status)

    @contextmanager
    def tokens(self):
        """Token ledger bound to a staged write set."""
        with self._transaction() as state:
            yield TokenLedger(state, emit=self._emit)

    # ==========================================================================
    # STATE MANAGEMENT HELPERS
    # ==========================================================================

    def _identity(self, value, field: str = "address") -> bytes:
        """Canonical bytes for an identity given as chain-native text or raw bytes."""
        if isinstance(value, str):
            return encode_address(value, self.schema)

        if not isinstance(value, (bytes, bytearray)) or not value:
            raise InvalidAddressFormatError(f"Invalid {field}: {value!r}")

        value = bytes(value)
        width = address_width(self.schema)
        if width is not None and len(value) != width:
            raise InvalidAddressFormatError(
                f"Invalid {field}: expected {width} bytes, got {len(value)}"
            )
        return value

    def _get_governance(self, state: StagedState) -> Governance:
        data = state.get_record(GOVERNANCE_ADDRESS)
        if data is None:
            raise NotInitializedError("Registry is not initialized")
        return Governance.from_dict(data)

    def _set_governance(self, governance: Governance, state: StagedState):
        state.put_record(GOVERNANCE_ADDRESS, governance.to_dict())

    def _get_stake_configuration(self, state: StagedState) -> StakeConfiguration:
        return StakeConfiguration(state.get_record(STAKE_CONFIG_ADDRESS))

    def _set_stake_configuration(self, config: StakeConfiguration, state: StagedState):
        state.put_record(STAKE_CONFIG_ADDRESS, config.to_dict())

    def _get_reward_configuration(self, state: StagedState) -> RewardConfiguration:
        return RewardConfiguration(state.get_record(REWARD_CONFIG_ADDRESS))

    def _set_reward_configuration(self, config: RewardConfiguration, state: StagedState):
        state.put_record(REWARD_CONFIG_ADDRESS, config.to_dict())

    def _get_reporter_index(self, state: StagedState) -> list:
        return state.get_record(REPORTER_INDEX_ADDRESS) or []

    def _load_reporter(self, state: StagedState, reporter_id: uuid.UUID) -> Reporter:
        data = state.get_record(reporter_slot(reporter_id))
        if data is None:
            raise NotFoundError(f"Reporter {reporter_id} not found")
        return Reporter.from_dict(data)

    def _store_reporter(self, reporter: Reporter, state: StagedState):
        state.put_record(reporter_slot(reporter.id), reporter.to_dict())

    # ==========================================================================
    # AUTHORIZATION
    # ==========================================================================

    def _require_owner_or_authority(self, state: StagedState, sender: bytes):
        governance = self._get_governance(state)
        if sender != governance.owner and sender != governance.authority:
            raise UnauthorizedError("Caller is not the owner or authority")

    def _require_authority(self, state: StagedState, sender: bytes):
        # Owner alone is not enough for reporter management
        governance = self._get_governance(state)
        if sender != governance.authority:
            raise UnauthorizedError("Caller is not the authority")

    @staticmethod
    def _require_reporter_account(reporter: Reporter, sender: bytes):
        if sender != reporter.account:
            raise UnauthorizedError("Caller is not the reporter account")

    # ==========================================================================
    # GOVERNANCE
    # ==========================================================================

    def initialize(self, owner):
        """One-time setup: owner and authority both start as ``owner``."""
        owner = self._identity(owner, "owner")

        with self._transaction() as state:
            if state.get(GOVERNANCE_ADDRESS) is not None:
                raise AlreadyInitializedError("Registry is already initialized")

            self._set_governance(Governance(owner, owner), state)
            self._set_stake_configuration(StakeConfiguration(), state)
            self._set_reward_configuration(RewardConfiguration(), state)
            state.put_record(REPORTER_INDEX_ADDRESS, [])

        logger.info(f"Registry initialized with owner 0x{owner.hex()}")

    def set_authority(self, sender: bytes, new_authority):
        new_authority = self._identity(new_authority, "authority")

        with self._transaction() as state:
            self._require_owner_or_authority(state, sender)

            governance = self._get_governance(state)
            governance.authority = new_authority
            self._set_governance(governance, state)

            self._emit(Event("AuthorityChanged", (new_authority,)))

    def update_stake_configuration(self, sender: bytes, token, unlock_duration: int,
                                   validator_stake: int, tracer_stake: int,
                                   publisher_stake: int, authority_stake: int):
        """Replace the whole stake configuration."""
        config = StakeConfiguration({
            'token': self._identity(token, "stake token"),
            'unlock_duration': unlock_duration,
            'validator_stake': validator_stake,
            'tracer_stake': tracer_stake,
            'publisher_stake': publisher_stake,
            'authority_stake': authority_stake,
        })

        with self._transaction() as state:
            self._require_owner_or_authority(state, sender)
            self._set_stake_configuration(config, state)
            self._emit(Event("StakeConfigurationChanged", config.as_tuple()))

    def update_reward_configuration(self, sender: bytes, token,
                                    address_confirmation_reward: int, tracer_reward: int):
        """Replace the whole reward configuration."""
        config = RewardConfiguration({
            'token': self._identity(token, "reward token"),
            'address_confirmation_reward': address_confirmation_reward,
            'tracer_reward': tracer_reward,
        })

        with self._transaction() as state:
            self._require_owner_or_authority(state, sender)
            self._set_reward_configuration(config, state)
            self._emit(Event("RewardConfigurationChanged", config.as_tuple()))

    def get_owner(self) -> bytes:
        return self._get_governance(self._view()).owner

    def get_authority(self) -> bytes:
        return self._get_governance(self._view()).authority

    def get_stake_configuration(self) -> StakeConfiguration:
        return self._get_stake_configuration(self._view())

    def get_reward_configuration(self) -> RewardConfiguration:
        return self._get_reward_configuration(self._view())

    # ==========================================================================
    # REPORTER MANAGEMENT
    # ==========================================================================

    @staticmethod
    def _check_text(value, field: str, max_length: int) -> str:
        if not isinstance(value, str):
            raise ValidationError(f"Reporter {field} must be a string")
        if len(value) > max_length:
            raise ValidationError(f"Reporter {field} exceeds {max_length} characters")
        return value

    def _reporter_fields(self, reporter_id, account, role, name, url) -> tuple:
        return (
            parse_reporter_id(reporter_id),
            self._identity(account, "reporter account"),
            ReporterRole.parse(role),
            self._check_text(name, "name", MAX_NAME_LENGTH),
            self._check_text(url, "url", MAX_URL_LENGTH),
        )

    def create_reporter(self, sender: bytes, reporter_id, account, role, name: str, url: str):
        reporter_id, account, role, name, url = self._reporter_fields(
            reporter_id, account, role, name, url
        )

        with self._transaction() as state:
            self._require_authority(state, sender)

            if state.get(reporter_slot(reporter_id)) is not None:
                raise DuplicateIdError(f"Reporter {reporter_id} already exists")

            reporter = Reporter(reporter_id, account, name, url, role)
            self._move(None, reporter.status)
            self._store_reporter(reporter, state)

            index = self._get_reporter_index(state)
            index.append(reporter_id.bytes)
            state.put_record(REPORTER_INDEX_ADDRESS, index)

            self._emit(Event("ReporterCreated", (reporter_id, account, role)))

    def update_reporter(self, sender: bytes, reporter_id, account, role, name: str, url: str):
        """
        Overwrite a reporter's descriptive fields.

        The reporter always comes back Inactive with zeroed stake fields, even
        if it was Active or Unstaking; tokens already staked stay in the stash.
        """
        reporter_id, account, role, name, url = self._reporter_fields(
            reporter_id, account, role, name, url
        )

        with self._transaction() as state:
            self._require_authority(state, sender)

            reporter = self._load_reporter(state, reporter_id)
            if reporter.status != ReporterStatus.INACTIVE:
                logger.warning(
                    f"Reporter {reporter_id} updated while {reporter.status.name}; "
                    f"discarding stake of {reporter.staked_amount}"
                )

            reporter.account = account
            reporter.role = role
            reporter.name = name
            reporter.url = url
            self._move(reporter.status, ReporterStatus.INACTIVE)
            reporter.reset_stake()
            self._store_reporter(reporter, state)

            self._emit(Event("ReporterUpdated", (reporter_id, account, role)))

    def activate_reporter(self, sender: bytes, reporter_id):
        """Pull the role's stake from the reporter account into the stash."""
        reporter_id = parse_reporter_id(reporter_id)

        with self._transaction() as state:
            reporter = self._load_reporter(state, reporter_id)
            self._require_reporter_account(reporter, sender)

            if reporter.status != ReporterStatus.INACTIVE:
                raise AlreadyActiveError(
                    f"Reporter {reporter_id} is {reporter.status.name}, expected INACTIVE"
                )

            config = self._get_stake_configuration(state)
            if not any(config.token):
                raise TransferFailedError("Stake token is not configured")

            amount = config.stake_for(reporter.role)
            TokenLedger(state, emit=self._emit).transfer_from(
                config.token,
                spender=self.stash_address,
                owner=sender,
                to=self.stash_address,
                amount=amount,
            )

            self._move(reporter.status, ReporterStatus.ACTIVE)
            reporter.status = ReporterStatus.ACTIVE
            reporter.staked_amount = amount
            reporter.unlock_timestamp = 0
            self._store_reporter(reporter, state)

            self._emit(Event("ReporterActivated", (reporter_id, amount)))

    def deactivate_reporter(self, sender: bytes, reporter_id):
        """Start the unlock period of an Active reporter."""
        reporter_id = parse_reporter_id(reporter_id)

        with self._transaction() as state:
            reporter = self._load_reporter(state, reporter_id)
            self._require_reporter_account(reporter, sender)

            if reporter.status != ReporterStatus.ACTIVE:
                raise InvalidStateTransitionError(
                    f"Reporter {reporter_id} is {reporter.status.name}, expected ACTIVE"
                )

            config = self._get_stake_configuration(state)
            self._move(reporter.status, ReporterStatus.UNSTAKING)
            reporter.status = ReporterStatus.UNSTAKING
            reporter.unlock_timestamp = int(self.clock()) + config.unlock_duration
            self._store_reporter(reporter, state)

            self._emit(Event("ReporterDeactivated", (reporter_id, reporter.unlock_timestamp)))

    def unstake_reporter(self, sender: bytes, reporter_id):
        """Return the full stake once the unlock time has passed."""
        reporter_id = parse_reporter_id(reporter_id)

        with self._transaction() as state:
            reporter = self._load_reporter(state, reporter_id)
            self._require_reporter_account(reporter, sender)

            if reporter.status != ReporterStatus.UNSTAKING:
                raise InvalidStateTransitionError(
                    f"Reporter {reporter_id} is {reporter.status.name}, expected UNSTAKING"
                )

            now = int(self.clock())
            if now < reporter.unlock_timestamp:
                raise InvalidStateTransitionError(
                    f"Stake is locked for {reporter.unlock_timestamp - now} more seconds"
                )

            amount = reporter.staked_amount
            if amount > 0:
                config = self._get_stake_configuration(state)
                TokenLedger(state, emit=self._emit).transfer(
                    config.token, self.stash_address, sender, amount
                )

            self._move(reporter.status, ReporterStatus.INACTIVE)
            reporter.reset_stake()
            self._store_reporter(reporter, state)

            self._emit(Event("ReporterUnstaked", (reporter_id, amount)))

    def get_reporter(self, reporter_id) -> Reporter:
        return self._load_reporter(self._view(), parse_reporter_id(reporter_id))

    def get_reporter_count(self) -> int:
        return len(self._get_reporter_index(self._view()))

    def get_reporters(self, skip: int = 0, take: int = 100) -> list[Reporter]:
        """Reporters in creation order."""
        if skip < 0 or take < 0:
            raise ValidationError("skip and take must be non-negative")

        state = self._view()
        ids = self._get_reporter_index(state)[skip:skip + take]
        return [self._load_reporter(state, uuid.UUID(bytes=bytes(i))) for i in ids]

    # ==========================================================================
    # TRANSACTION PROCESSING
    # ==========================================================================

    def get_nonce(self, address: bytes) -> int:
        return self._view().get_record(_nonce_key(address)) or 0

    def process_transaction(self, tx: Transaction) -> bool:
        """
        Verify a signed transaction and apply it atomically.
        The nonce only advances when the whole transaction succeeds.
        """
        start = time.time()
        try:
            valid, error = tx.validate_basic()
            if not valid:
                raise ValidationError(error)

            if tx.chain_id != self.chain_id:
                raise ValidationError(f"Wrong chain ID. Expected {self.chain_id}, got {tx.chain_id}")

            sender = tx.sender
            with self._transaction() as state:
                expected_nonce = state.get_record(_nonce_key(sender)) or 0
                if tx.nonce != expected_nonce:
                    raise ValidationError(
                        f"Invalid nonce. Expected {expected_nonce}, got {tx.nonce}"
                    )
                state.put_record(_nonce_key(sender), expected_nonce + 1)

                self._dispatch(tx, sender)

        except Exception as e:
            logger.warning(f"Transaction {tx.tx_type} failed: {e}")
            if self.monitor:
                self.monitor.record_tx(tx.tx_type, 'failed', time.time() - start)
            raise

        if self.monitor:
            self.monitor.record_tx(tx.tx_type, 'success', time.time() - start)
        logger.debug(f"Transaction {tx.id.hex()[:8]} ({tx.tx_type}) applied")
        return True

    def _dispatch(self, tx: Transaction, sender: bytes):
        data = tx.data

        if tx.tx_type == SET_AUTHORITY:
            self.set_authority(sender, data['authority'])

        elif tx.tx_type == UPDATE_STAKE_CONFIGURATION:
            self.update_stake_configuration(
                sender, data['token'], _tx_amount(data, 'unlock_duration'),
                _tx_amount(data, 'validator_stake'), _tx_amount(data, 'tracer_stake'),
                _tx_amount(data, 'publisher_stake'), _tx_amount(data, 'authority_stake'),
            )

        elif tx.tx_type == UPDATE_REWARD_CONFIGURATION:
            self.update_reward_configuration(
                sender, data['token'],
                _tx_amount(data, 'address_confirmation_reward'), _tx_amount(data, 'tracer_reward'),
            )

        elif tx.tx_type == CREATE_REPORTER:
            self.create_reporter(
                sender, data['id'], data['account'], data['role'], data['name'], data['url']
            )

        elif tx.tx_type == UPDATE_REPORTER:
            self.update_reporter(
                sender, data['id'], data['account'], data['role'], data['name'], data['url']
            )

        elif tx.tx_type == ACTIVATE_REPORTER:
            self.activate_reporter(sender, data['id'])

        elif tx.tx_type == DEACTIVATE_REPORTER:
            self.deactivate_reporter(sender, data['id'])

        elif tx.tx_type == UNSTAKE_REPORTER:
            self.unstake_reporter(sender, data['id'])

        else:
            raise ValidationError(f"Unknown transaction type: {tx.tx_type}")
