"""
Tests for the reporter lifecycle: create, update, activate, deactivate, unstake.
"""
import unittest
import shutil
import tempfile
import uuid

from risk_registry.codec import NetworkSchema, encode_address
from risk_registry.core import Event
from risk_registry.db import DB
from risk_registry.errors import (
    AlreadyActiveError,
    DuplicateIdError,
    InsufficientAllowanceError,
    InvalidStateTransitionError,
    NotFoundError,
    TransferFailedError,
    UnauthorizedError,
    ValidationError,
)
from risk_registry.registry import Registry, reporter_slot
from risk_registry.state import Reporter, ReporterRole, ReporterStatus

PROGRAM_ID = "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS"
COMMUNITY = "11111111111111111111111111111111"

OWNER = b'\x01' * 20
AUTHORITY = b'\x02' * 20
NOBODY = b'\x03' * 20
STAKE_TOKEN = b'\x7a' * 20

PUBLISHER_ACCOUNT = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
PUBLISHER = encode_address(PUBLISHER_ACCOUNT, NetworkSchema.ETHEREUM)
VALIDATOR_ACCOUNT = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
VALIDATOR = encode_address(VALIDATOR_ACCOUNT, NetworkSchema.ETHEREUM)

UNLOCK_DURATION = 3600
VALIDATOR_STAKE, TRACER_STAKE, PUBLISHER_STAKE, AUTHORITY_STAKE = 101, 102, 103, 104

START_TIME = 1_700_000_000


class ReporterTestCase(unittest.TestCase):
    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.db = DB(self.test_dir)
        self.now = START_TIME
        self.registry = Registry(self.db, PROGRAM_ID, COMMUNITY, clock=lambda: self.now)
        self.registry.initialize(OWNER)
        self.registry.set_authority(OWNER, AUTHORITY)
        self.registry.update_stake_configuration(
            AUTHORITY, STAKE_TOKEN, UNLOCK_DURATION,
            VALIDATOR_STAKE, TRACER_STAKE, PUBLISHER_STAKE, AUTHORITY_STAKE,
        )

        with self.registry.tokens() as ledger:
            ledger.mint(STAKE_TOKEN, PUBLISHER, PUBLISHER_STAKE * 2)
            ledger.mint(STAKE_TOKEN, VALIDATOR, VALIDATOR_STAKE * 2)

        self.publisher_id = uuid.uuid4()
        self.registry.create_reporter(
            AUTHORITY, self.publisher_id, PUBLISHER_ACCOUNT,
            ReporterRole.PUBLISHER, "publisher", "https://publisher.blockchain",
        )

    def tearDown(self):
        self.db.close()
        shutil.rmtree(self.test_dir)

    def approve(self, account: bytes, amount: int):
        with self.registry.tokens() as ledger:
            ledger.approve(STAKE_TOKEN, account, self.registry.stash_address, amount)

    def balance(self, holder: bytes) -> int:
        with self.registry.tokens() as ledger:
            return ledger.balance_of(STAKE_TOKEN, holder)

    def activate_publisher(self):
        self.approve(PUBLISHER, PUBLISHER_STAKE)
        self.registry.activate_reporter(PUBLISHER, self.publisher_id)


class TestCreateReporter(ReporterTestCase):
    def test_create_and_get(self):
        reporter = self.registry.get_reporter(self.publisher_id)

        self.assertEqual(reporter.as_tuple(), (
            self.publisher_id,
            PUBLISHER,
            "publisher",
            "https://publisher.blockchain",
            ReporterRole.PUBLISHER,
            ReporterStatus.INACTIVE,
            0,
            0,
        ))
        self.assertEqual(
            self.registry.events[-1],
            Event("ReporterCreated", (self.publisher_id, PUBLISHER, ReporterRole.PUBLISHER)),
        )

    def test_new_publisher_is_never_active(self):
        self.assertEqual(self.registry.get_reporter(self.publisher_id).status, ReporterStatus.INACTIVE)

    def test_duplicate_id_rejected(self):
        with self.assertRaises(DuplicateIdError):
            self.registry.create_reporter(
                AUTHORITY, self.publisher_id, VALIDATOR_ACCOUNT,
                ReporterRole.VALIDATOR, "validator", "https://validator.blockchain",
            )

        reporter = self.registry.get_reporter(self.publisher_id)
        self.assertEqual(reporter.account, PUBLISHER)
        self.assertEqual(reporter.role, ReporterRole.PUBLISHER)
        self.assertEqual(self.registry.get_reporter_count(), 1)

    def test_stranger_cannot_create(self):
        with self.assertRaises(UnauthorizedError) as ctx:
            self.registry.create_reporter(
                NOBODY, uuid.uuid4(), VALIDATOR_ACCOUNT, ReporterRole.VALIDATOR, "v", "",
            )
        self.assertIn("Caller is not the authority", str(ctx.exception))

    def test_owner_alone_cannot_create(self):
        with self.assertRaises(UnauthorizedError):
            self.registry.create_reporter(
                OWNER, uuid.uuid4(), VALIDATOR_ACCOUNT, ReporterRole.VALIDATOR, "v", "",
            )

    def test_owner_creates_while_still_authority(self):
        # The owner manages reporters only while it also holds the authority role
        self.registry.set_authority(AUTHORITY, OWNER)
        reporter_id = uuid.uuid4()
        self.registry.create_reporter(OWNER, reporter_id, VALIDATOR, "validator", "v", "")
        self.assertEqual(self.registry.get_reporter(reporter_id).role, ReporterRole.VALIDATOR)

    def test_id_and_role_forms(self):
        self.registry.create_reporter(AUTHORITY, 42, VALIDATOR, "tracer", "t", "")
        reporter = self.registry.get_reporter(uuid.UUID(int=42))

        self.assertEqual(reporter.role, ReporterRole.TRACER)
        self.assertEqual(self.registry.get_reporter(str(uuid.UUID(int=42))), reporter)

    def test_invalid_role_rejected(self):
        with self.assertRaises(ValidationError):
            self.registry.create_reporter(AUTHORITY, uuid.uuid4(), VALIDATOR, 7, "x", "")
        with self.assertRaises(ValidationError):
            self.registry.create_reporter(AUTHORITY, uuid.uuid4(), VALIDATOR, "oracle", "x", "")

    def test_get_unknown_reporter(self):
        with self.assertRaises(NotFoundError):
            self.registry.get_reporter(uuid.uuid4())

    def test_record_lives_at_mapping_slot(self):
        raw = self.db.get(reporter_slot(self.publisher_id))
        self.assertIsNotNone(raw)
        self.assertEqual(reporter_slot(self.publisher_id), reporter_slot(self.publisher_id))
        self.assertNotEqual(reporter_slot(self.publisher_id), reporter_slot(uuid.uuid4()))


class TestListReporters(ReporterTestCase):
    def test_count_and_pagination_in_creation_order(self):
        ids = [self.publisher_id]
        for i in range(4):
            reporter_id = uuid.uuid4()
            self.registry.create_reporter(AUTHORITY, reporter_id, VALIDATOR, "validator", f"v{i}", "")
            ids.append(reporter_id)

        self.assertEqual(self.registry.get_reporter_count(), 5)
        self.assertEqual([r.id for r in self.registry.get_reporters(0, 10)], ids)
        self.assertEqual([r.id for r in self.registry.get_reporters(1, 2)], ids[1:3])
        self.assertEqual(self.registry.get_reporters(10, 5), [])

    def test_negative_paging_rejected(self):
        with self.assertRaises(ValidationError):
            self.registry.get_reporters(-1, 5)


class TestUpdateReporter(ReporterTestCase):
    def test_update_overwrites_fields(self):
        self.registry.update_reporter(
            AUTHORITY, self.publisher_id, VALIDATOR_ACCOUNT,
            ReporterRole.AUTHORITY, "authority", "https://authority.blockchain",
        )

        self.assertEqual(self.registry.get_reporter(self.publisher_id).as_tuple(), (
            self.publisher_id,
            VALIDATOR,
            "authority",
            "https://authority.blockchain",
            ReporterRole.AUTHORITY,
            ReporterStatus.INACTIVE,
            0,
            0,
        ))
        self.assertEqual(
            self.registry.events[-1],
            Event("ReporterUpdated", (self.publisher_id, VALIDATOR, ReporterRole.AUTHORITY)),
        )

    def test_update_resets_active_reporter(self):
        self.activate_publisher()
        self.assertEqual(self.registry.get_reporter(self.publisher_id).status, ReporterStatus.ACTIVE)

        self.registry.update_reporter(
            AUTHORITY, self.publisher_id, PUBLISHER, ReporterRole.PUBLISHER, "publisher", "",
        )

        reporter = self.registry.get_reporter(self.publisher_id)
        self.assertEqual(reporter.status, ReporterStatus.INACTIVE)
        self.assertEqual(reporter.staked_amount, 0)
        self.assertEqual(reporter.unlock_timestamp, 0)
        # Stake stays with the registry
        self.assertEqual(self.balance(self.registry.stash_address), PUBLISHER_STAKE)

    def test_update_resets_unstaking_reporter(self):
        self.activate_publisher()
        self.registry.deactivate_reporter(PUBLISHER, self.publisher_id)

        self.registry.update_reporter(
            AUTHORITY, self.publisher_id, PUBLISHER, ReporterRole.PUBLISHER, "publisher", "",
        )
        reporter = self.registry.get_reporter(self.publisher_id)
        self.assertEqual(reporter.status, ReporterStatus.INACTIVE)
        self.assertEqual(reporter.unlock_timestamp, 0)

    def test_update_unknown_reporter(self):
        with self.assertRaises(NotFoundError):
            self.registry.update_reporter(
                AUTHORITY, uuid.uuid4(), PUBLISHER, ReporterRole.PUBLISHER, "x", "",
            )

    def test_stranger_cannot_update(self):
        with self.assertRaises(UnauthorizedError):
            self.registry.update_reporter(
                NOBODY, self.publisher_id, NOBODY, ReporterRole.AUTHORITY, "x", "",
            )
        self.assertEqual(self.registry.get_reporter(self.publisher_id).account, PUBLISHER)


class TestActivateReporter(ReporterTestCase):
    def test_activate_with_sufficient_allowance(self):
        self.approve(PUBLISHER, PUBLISHER_STAKE)
        self.registry.activate_reporter(PUBLISHER, self.publisher_id)

        reporter = self.registry.get_reporter(self.publisher_id)
        self.assertEqual(reporter.status, ReporterStatus.ACTIVE)
        self.assertEqual(reporter.staked_amount, PUBLISHER_STAKE)
        self.assertEqual(self.balance(PUBLISHER), PUBLISHER_STAKE)
        self.assertEqual(self.balance(self.registry.stash_address), PUBLISHER_STAKE)
        self.assertEqual(
            self.registry.events[-1],
            Event("ReporterActivated", (self.publisher_id, PUBLISHER_STAKE)),
        )

    def test_activate_consumes_allowance(self):
        self.approve(PUBLISHER, PUBLISHER_STAKE + 10)
        self.registry.activate_reporter(PUBLISHER, self.publisher_id)

        with self.registry.tokens() as ledger:
            remaining = ledger.allowance(STAKE_TOKEN, PUBLISHER, self.registry.stash_address)
        self.assertEqual(remaining, 10)

    def test_activate_with_insufficient_allowance(self):
        self.approve(PUBLISHER, PUBLISHER_STAKE - 1)
        events_before = list(self.registry.events)

        with self.assertRaises(InsufficientAllowanceError):
            self.registry.activate_reporter(PUBLISHER, self.publisher_id)

        reporter = self.registry.get_reporter(self.publisher_id)
        self.assertEqual(reporter.status, ReporterStatus.INACTIVE)
        self.assertEqual(reporter.staked_amount, 0)
        self.assertEqual(self.balance(PUBLISHER), PUBLISHER_STAKE * 2)
        self.assertEqual(list(self.registry.events), events_before)

    def test_failed_transfer_leaves_everything_unchanged(self):
        with self.registry.tokens() as ledger:
            ledger.transfer(STAKE_TOKEN, PUBLISHER, NOBODY, PUBLISHER_STAKE * 2 - 1)
        self.approve(PUBLISHER, PUBLISHER_STAKE)

        with self.assertRaises(TransferFailedError):
            self.registry.activate_reporter(PUBLISHER, self.publisher_id)

        self.assertEqual(self.registry.get_reporter(self.publisher_id).status, ReporterStatus.INACTIVE)
        with self.registry.tokens() as ledger:
            self.assertEqual(
                ledger.allowance(STAKE_TOKEN, PUBLISHER, self.registry.stash_address),
                PUBLISHER_STAKE,
            )
            self.assertEqual(ledger.balance_of(STAKE_TOKEN, PUBLISHER), 1)

    def test_only_reporter_account_can_activate(self):
        self.approve(NOBODY, PUBLISHER_STAKE)
        with self.assertRaises(UnauthorizedError):
            self.registry.activate_reporter(NOBODY, self.publisher_id)
        with self.assertRaises(UnauthorizedError):
            self.registry.activate_reporter(AUTHORITY, self.publisher_id)

    def test_activate_twice_fails(self):
        self.approve(PUBLISHER, PUBLISHER_STAKE * 2)
        self.registry.activate_reporter(PUBLISHER, self.publisher_id)

        with self.assertRaises(AlreadyActiveError):
            self.registry.activate_reporter(PUBLISHER, self.publisher_id)
        self.assertEqual(self.balance(self.registry.stash_address), PUBLISHER_STAKE)

    def test_activate_requires_stake_token(self):
        self.registry.update_stake_configuration(AUTHORITY, b'\x00' * 20, 0, 0, 0, 0, 0)
        with self.assertRaises(TransferFailedError):
            self.registry.activate_reporter(PUBLISHER, self.publisher_id)

    def test_stake_follows_role(self):
        validator_id = uuid.uuid4()
        self.registry.create_reporter(
            AUTHORITY, validator_id, VALIDATOR, ReporterRole.VALIDATOR, "validator", "",
        )
        self.approve(VALIDATOR, VALIDATOR_STAKE)
        self.registry.activate_reporter(VALIDATOR, validator_id)

        self.assertEqual(self.registry.get_reporter(validator_id).staked_amount, VALIDATOR_STAKE)

    def test_activate_unknown_reporter(self):
        with self.assertRaises(NotFoundError):
            self.registry.activate_reporter(PUBLISHER, uuid.uuid4())


class TestUnstaking(ReporterTestCase):
    def test_deactivate_starts_unlock_period(self):
        self.activate_publisher()
        self.registry.deactivate_reporter(PUBLISHER, self.publisher_id)

        reporter = self.registry.get_reporter(self.publisher_id)
        self.assertEqual(reporter.status, ReporterStatus.UNSTAKING)
        self.assertEqual(reporter.unlock_timestamp, START_TIME + UNLOCK_DURATION)
        self.assertEqual(reporter.staked_amount, PUBLISHER_STAKE)
        self.assertEqual(
            self.registry.events[-1],
            Event("ReporterDeactivated", (self.publisher_id, START_TIME + UNLOCK_DURATION)),
        )

    def test_deactivate_requires_active(self):
        with self.assertRaises(InvalidStateTransitionError):
            self.registry.deactivate_reporter(PUBLISHER, self.publisher_id)

    def test_only_reporter_account_can_deactivate(self):
        self.activate_publisher()
        with self.assertRaises(UnauthorizedError):
            self.registry.deactivate_reporter(AUTHORITY, self.publisher_id)

    def test_unstake_before_unlock_fails(self):
        self.activate_publisher()
        self.registry.deactivate_reporter(PUBLISHER, self.publisher_id)

        self.now = START_TIME + UNLOCK_DURATION - 1
        with self.assertRaises(InvalidStateTransitionError):
            self.registry.unstake_reporter(PUBLISHER, self.publisher_id)
        self.assertEqual(self.registry.get_reporter(self.publisher_id).status, ReporterStatus.UNSTAKING)

    def test_unstake_after_unlock_returns_stake(self):
        self.activate_publisher()
        self.registry.deactivate_reporter(PUBLISHER, self.publisher_id)

        self.now = START_TIME + UNLOCK_DURATION
        self.registry.unstake_reporter(PUBLISHER, self.publisher_id)

        reporter = self.registry.get_reporter(self.publisher_id)
        self.assertEqual(reporter.status, ReporterStatus.INACTIVE)
        self.assertEqual(reporter.staked_amount, 0)
        self.assertEqual(reporter.unlock_timestamp, 0)
        self.assertEqual(self.balance(PUBLISHER), PUBLISHER_STAKE * 2)
        self.assertEqual(self.balance(self.registry.stash_address), 0)
        self.assertEqual(
            self.registry.events[-1],
            Event("ReporterUnstaked", (self.publisher_id, PUBLISHER_STAKE)),
        )

    def test_unstake_requires_unstaking(self):
        self.activate_publisher()
        with self.assertRaises(InvalidStateTransitionError):
            self.registry.unstake_reporter(PUBLISHER, self.publisher_id)

    def test_full_cycle_allows_reactivation(self):
        self.activate_publisher()
        self.registry.deactivate_reporter(PUBLISHER, self.publisher_id)
        self.now += UNLOCK_DURATION
        self.registry.unstake_reporter(PUBLISHER, self.publisher_id)

        self.activate_publisher()
        self.assertEqual(self.registry.get_reporter(self.publisher_id).status, ReporterStatus.ACTIVE)


class TestEighteenDecimalStakes(ReporterTestCase):
    STAKE = 100 * 10 ** 18

    def setUp(self):
        super().setUp()
        self.registry.update_stake_configuration(
            AUTHORITY, STAKE_TOKEN, UNLOCK_DURATION,
            self.STAKE, self.STAKE, self.STAKE, self.STAKE,
        )
        with self.registry.tokens() as ledger:
            ledger.mint(STAKE_TOKEN, PUBLISHER, self.STAKE)

    def test_activate_and_unstake(self):
        self.approve(PUBLISHER, self.STAKE)
        self.registry.activate_reporter(PUBLISHER, self.publisher_id)

        reporter = self.registry.get_reporter(self.publisher_id)
        self.assertEqual(reporter.status, ReporterStatus.ACTIVE)
        self.assertEqual(reporter.staked_amount, self.STAKE)
        self.assertEqual(self.balance(self.registry.stash_address), self.STAKE)

        self.registry.deactivate_reporter(PUBLISHER, self.publisher_id)
        self.now += UNLOCK_DURATION
        self.registry.unstake_reporter(PUBLISHER, self.publisher_id)

        self.assertEqual(self.registry.get_reporter(self.publisher_id).staked_amount, 0)
        self.assertEqual(self.balance(PUBLISHER), self.STAKE + PUBLISHER_STAKE * 2)
        self.assertEqual(self.balance(self.registry.stash_address), 0)
        self.assertEqual(
            self.registry.events[-1],
            Event("ReporterUnstaked", (self.publisher_id, self.STAKE)),
        )

    def test_allowance_one_short(self):
        self.approve(PUBLISHER, self.STAKE - 1)
        with self.assertRaises(InsufficientAllowanceError):
            self.registry.activate_reporter(PUBLISHER, self.publisher_id)
        self.assertEqual(self.registry.get_reporter(self.publisher_id).status, ReporterStatus.INACTIVE)


class TestReporterRecord(unittest.TestCase):
    def test_dict_round_trip(self):
        reporter = Reporter(uuid.uuid4(), PUBLISHER, "name", "url", ReporterRole.TRACER,
                            ReporterStatus.UNSTAKING, 5, 10)
        self.assertEqual(Reporter.from_dict(reporter.to_dict()), reporter)

    def test_role_parse(self):
        self.assertEqual(ReporterRole.parse("Publisher"), ReporterRole.PUBLISHER)
        self.assertEqual(ReporterRole.parse(3), ReporterRole.AUTHORITY)


if __name__ == '__main__':
    unittest.main()
