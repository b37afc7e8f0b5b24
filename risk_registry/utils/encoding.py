"""
Fixed-width byte encodings for derivation seeds and stored amounts.
"""
from risk_registry.errors import InvalidAddressFormatError, ValidationError

MAX_SEED_LENGTH = 32

# Address seeds are zero-padded to this width and split into MAX_SEED_LENGTH chunks
ADDRESS_SEED_WIDTH = 64
SEED_PADDING = b'\x00'

# Token amounts and stake values are account-model uint256
MAX_UINT256 = 2 ** 256 - 1
UINT256_LENGTH = 32


def bytes_from_string(value: str, size: int | None = None) -> bytes:
    """
    UTF-8 encode a string.
    With ``size`` the result is truncated or zero-padded to exactly that width.
    """
    raw = value.encode('utf-8')
    if size is None:
        return raw
    return raw[:size].ljust(size, SEED_PADDING)


def u64_le(value: int) -> bytes:
    """Encode an unsigned 64-bit integer as 8 little-endian bytes."""
    if not isinstance(value, int) or value < 0 or value >= 2 ** 64:
        raise ValidationError(f"Value {value!r} does not fit in an unsigned 64-bit integer")
    return value.to_bytes(8, 'little')


def check_uint256(value, field: str = "value") -> int:
    """Return ``value`` if it is an int in [0, 2**256), else raise ValidationError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer, got {value!r}")
    if value < 0 or value > MAX_UINT256:
        raise ValidationError(f"{field} {value} does not fit in an unsigned 256-bit integer")
    return value


def uint256_to_bytes(value: int, field: str = "value") -> bytes:
    """32-byte big-endian form; msgpack integers stop at 64 bits."""
    return check_uint256(value, field).to_bytes(UINT256_LENGTH, 'big')


def uint256_from_bytes(raw: bytes | None) -> int:
    if raw is None:
        return 0
    return int.from_bytes(bytes(raw), 'big')


def chunk_bytes(raw: bytes, width: int = ADDRESS_SEED_WIDTH,
                chunk_size: int = MAX_SEED_LENGTH) -> list[bytes]:
    """Zero-pad ``raw`` to ``width`` and split it into ``chunk_size`` pieces."""
    if len(raw) > width:
        raise InvalidAddressFormatError(
            f"Address of {len(raw)} bytes exceeds the {width}-byte seed width"
        )
    padded = raw.ljust(width, SEED_PADDING)
    return [padded[i:i + chunk_size] for i in range(0, width, chunk_size)]
