"""
Conversion between chain-native address text and the canonical raw bytes
the registry stores and feeds into seed derivation.
"""
import string
from enum import Enum

import base58

from risk_registry.crypto import generate_hash
from risk_registry.errors import InvalidAddressFormatError

ETHEREUM_ADDRESS_LENGTH = 20
SOLANA_ADDRESS_LENGTH = 32

ZERO_ADDRESS = b'\x00' * ETHEREUM_ADDRESS_LENGTH


class NetworkSchema(str, Enum):
    """Chain family whose address format governs encode/decode."""
    PLAIN = "Plain"
    SOLANA = "Solana"
    ETHEREUM = "Ethereum"
    BITCOIN = "Bitcoin"
    NEAR = "Near"


def address_width(schema) -> int | None:
    """Raw byte width for schemas with a binary form, None otherwise."""
    if schema == NetworkSchema.ETHEREUM:
        return ETHEREUM_ADDRESS_LENGTH
    if schema == NetworkSchema.SOLANA:
        return SOLANA_ADDRESS_LENGTH
    return None


def to_checksum_address(raw: bytes) -> str:
    """Render 20 raw bytes as an EIP-55 mixed-case hex address."""
    if len(raw) != ETHEREUM_ADDRESS_LENGTH:
        raise InvalidAddressFormatError(
            f"Ethereum address must be {ETHEREUM_ADDRESS_LENGTH} bytes, got {len(raw)}"
        )
    hex_address = raw.hex()
    digest = generate_hash(hex_address.encode('ascii')).hex()

    checksummed = ''.join(
        char.upper() if char in 'abcdef' and int(digest[i], 16) >= 8 else char
        for i, char in enumerate(hex_address)
    )
    return '0x' + checksummed


def _encode_ethereum(address: str) -> bytes:
    body = address[2:] if address[:2] in ('0x', '0X') else address

    if len(body) != 2 * ETHEREUM_ADDRESS_LENGTH or not all(c in string.hexdigits for c in body):
        raise InvalidAddressFormatError(f"Invalid Ethereum address: {address!r}")

    raw = bytes.fromhex(body)

    # All-lower and all-upper inputs carry no checksum
    if body != body.lower() and body != body.upper():
        if to_checksum_address(raw)[2:] != body:
            raise InvalidAddressFormatError(f"Invalid EIP-55 checksum: {address!r}")

    return raw


def _encode_solana(address: str) -> bytes:
    try:
        raw = base58.b58decode(address)
    except ValueError as e:
        raise InvalidAddressFormatError(f"Invalid base58 address {address!r}: {e}") from e

    if len(raw) != SOLANA_ADDRESS_LENGTH:
        raise InvalidAddressFormatError(
            f"Solana address must decode to {SOLANA_ADDRESS_LENGTH} bytes, got {len(raw)}"
        )
    return raw


def encode_address(address: str, schema) -> bytes:
    """Parse chain-native address text into its canonical raw bytes."""
    if not isinstance(address, str):
        raise InvalidAddressFormatError(f"Address must be a string, got {type(address).__name__}")

    if schema == NetworkSchema.ETHEREUM:
        return _encode_ethereum(address)
    if schema == NetworkSchema.SOLANA:
        return _encode_solana(address)

    return address.encode('utf-8')


def decode_address(raw: bytes, schema) -> str:
    """Render canonical raw bytes as chain-native address text."""
    if schema == NetworkSchema.ETHEREUM:
        return to_checksum_address(bytes(raw))

    if schema == NetworkSchema.SOLANA:
        if len(raw) != SOLANA_ADDRESS_LENGTH:
            raise InvalidAddressFormatError(
                f"Solana address must be {SOLANA_ADDRESS_LENGTH} bytes, got {len(raw)}"
            )
        return base58.b58encode(bytes(raw)).decode('ascii')

    try:
        return bytes(raw).decode('utf-8')
    except UnicodeDecodeError as e:
        raise InvalidAddressFormatError(f"Address bytes are not valid UTF-8: {e}") from e


def is_valid_address(address: str, schema) -> bool:
    try:
        encode_address(address, schema)
        return True
    except InvalidAddressFormatError:
        return False
