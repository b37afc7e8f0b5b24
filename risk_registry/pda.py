"""
Deterministic storage addresses for registry entities.

Every entity is located, not looked up: its address is a pure function of
a domain tag, parent keys and typed discriminators, hashed together with the
registry's program id. Off-chain clients and on-chain logic compute the same
address independently.

Seed layout for every derivation:

    tag (ASCII) || parent keys (32 bytes each, parent to child) || discriminators

Discriminators:
    names      UTF-8, truncated / zero-padded to 32 bytes
    case ids   u64 little-endian
    addresses  canonical bytes, zero-padded to 64 bytes, two 32-byte chunks
"""
import logging

import base58

from risk_registry.codec import encode_address
from risk_registry.crypto import sha256, is_on_curve
from risk_registry.errors import InvalidSeedsError, SeedExhaustedError, ValidationError
from risk_registry.utils.encoding import (
    MAX_SEED_LENGTH,
    bytes_from_string,
    chunk_bytes,
    u64_le,
)

logger = logging.getLogger(__name__)

MAX_SEEDS = 16
MAX_BUMP = 255
KEY_LENGTH = 32
PDA_MARKER = b"ProgramDerivedAddress"
NAME_LENGTH = 32

# Domain tags
COMMUNITY_STASH_TAG = "community_stash"
NETWORK_TAG = "network"
NETWORK_REWARD_TAG = "network_reward"
REPORTER_TAG = "reporter"
REPORTER_REWARD_TAG = "reporter_reward"
CASE_TAG = "case"
ADDRESS_TAG = "address"
ASSET_TAG = "asset"


def to_key(key) -> bytes:
    """Accept a 32-byte key as raw bytes or base58 text."""
    if isinstance(key, str):
        try:
            key = base58.b58decode(key)
        except ValueError as e:
            raise ValidationError(f"Invalid base58 key {key!r}: {e}") from e
    key = bytes(key)
    if len(key) != KEY_LENGTH:
        raise ValidationError(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")
    return key


def address_to_seeds(address, schema=None) -> list[bytes]:
    """
    Split an address into fixed 32-byte seed chunks.
    Text is normalized through the address codec first.
    """
    if isinstance(address, str):
        address = encode_address(address, schema)
    return chunk_bytes(bytes(address))


def _check_seeds(seeds: list[bytes], max_seeds: int = MAX_SEEDS):
    if len(seeds) > max_seeds:
        raise InvalidSeedsError(f"Too many seeds: {len(seeds)}/{max_seeds}")
    for seed in seeds:
        if len(seed) > MAX_SEED_LENGTH:
            raise InvalidSeedsError(
                f"Seed of {len(seed)} bytes exceeds the {MAX_SEED_LENGTH}-byte limit"
            )


def _hash_seeds(seeds: list[bytes], program_id: bytes) -> bytes:
    return sha256(b''.join(seeds) + program_id + PDA_MARKER)


def create_program_address(seeds: list[bytes], program_id) -> bytes:
    """Hash seeds (bump included) into an address; fails if it lands on the curve."""
    program_id = to_key(program_id)
    seeds = [bytes(seed) for seed in seeds]
    _check_seeds(seeds)

    address = _hash_seeds(seeds, program_id)
    if is_on_curve(address):
        raise InvalidSeedsError("Derived address lies on the ed25519 curve")
    return address


def find_program_address(seeds: list[bytes], program_id) -> tuple[bytes, int]:
    """Search bumps from 255 downward for the first off-curve address."""
    program_id = to_key(program_id)
    seeds = [bytes(seed) for seed in seeds]
    # One slot is reserved for the bump
    _check_seeds(seeds, MAX_SEEDS - 1)

    for bump in range(MAX_BUMP, 0, -1):
        address = _hash_seeds(seeds + [bytes([bump])], program_id)
        if not is_on_curve(address):
            logger.debug(f"Derived {address.hex()[:16]} with bump {bump}")
            return address, bump

    raise SeedExhaustedError("Unable to find a viable program address bump seed")


class ProgramAddresses:
    """Entity address finders bound to one registry program id."""

    def __init__(self, program_id):
        self.program_id = to_key(program_id)

    def _find(self, seeds: list[bytes]) -> tuple[bytes, int]:
        return find_program_address(seeds, self.program_id)

    def find_community_token_signer_address(self, community) -> tuple[bytes, int]:
        return self._find([
            bytes_from_string(COMMUNITY_STASH_TAG),
            to_key(community),
        ])

    def find_network_address(self, community, name: str) -> tuple[bytes, int]:
        return self._find([
            bytes_from_string(NETWORK_TAG),
            to_key(community),
            bytes_from_string(name, NAME_LENGTH),
        ])

    def find_network_reward_signer_address(self, network) -> tuple[bytes, int]:
        return self._find([
            bytes_from_string(NETWORK_REWARD_TAG),
            to_key(network),
        ])

    def find_reporter_address(self, community, pubkey) -> tuple[bytes, int]:
        return self._find([
            bytes_from_string(REPORTER_TAG),
            to_key(community),
            to_key(pubkey),
        ])

    def find_reporter_reward_address(self, network, reporter) -> tuple[bytes, int]:
        return self._find([
            bytes_from_string(REPORTER_REWARD_TAG),
            to_key(network),
            to_key(reporter),
        ])

    def find_case_address(self, community, case_id: int) -> tuple[bytes, int]:
        return self._find([
            bytes_from_string(CASE_TAG),
            to_key(community),
            u64_le(case_id),
        ])

    def find_address_address(self, network, address, schema=None) -> tuple[bytes, int]:
        """Locate a flagged address record."""
        return self._find([
            bytes_from_string(ADDRESS_TAG),
            to_key(network),
            *address_to_seeds(address, schema),
        ])

    def find_asset_address(self, network, mint, asset_id: bytes,
                           schema=None) -> tuple[bytes, int]:
        """Locate a flagged asset record by mint address and asset id."""
        asset_id = bytes(asset_id)
        if len(asset_id) > MAX_SEED_LENGTH:
            raise InvalidSeedsError(
                f"Asset id of {len(asset_id)} bytes exceeds the {MAX_SEED_LENGTH}-byte limit"
            )
        return self._find([
            bytes_from_string(ASSET_TAG),
            to_key(network),
            *address_to_seeds(mint, schema),
            asset_id,
        ])
