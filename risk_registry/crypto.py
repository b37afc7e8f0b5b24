"""
Core cryptographic functions for the registry.
"""
import hashlib
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives import serialization
from cryptography.exceptions import InvalidSignature
import nacl.signing

# Curve25519 field prime and the twisted Edwards constant d = -121665/121666
ED25519_P = 2 ** 255 - 19
ED25519_D = (-121665 * pow(121666, ED25519_P - 2, ED25519_P)) % ED25519_P


def generate_hash(data: bytes) -> bytes:
    """Generates a Keccak-256 hash."""
    from Crypto.Hash import keccak
    return keccak.new(digest_bits=256, data=data).digest()


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def is_on_curve(point: bytes) -> bool:
    """
    Checks whether 32 bytes decompress to a point on the ed25519 curve.

    Mirrors curve25519-dalek's ``CompressedEdwardsY::decompress``: the sign
    bit is ignored, y is reduced modulo p, and the point exists when
    (y^2 - 1) / (d*y^2 + 1) is a square in the field.
    """
    if len(point) != 32:
        return False

    y = (int.from_bytes(point, 'little') & ((1 << 255) - 1)) % ED25519_P
    yy = y * y % ED25519_P
    u = (yy - 1) % ED25519_P
    v = (ED25519_D * yy + 1) % ED25519_P

    x2 = u * pow(v, ED25519_P - 2, ED25519_P) % ED25519_P
    if x2 == 0:
        return True
    return pow(x2, (ED25519_P - 1) // 2, ED25519_P) == 1


# --- Key-based chains (ed25519 via PyNaCl) ---

def generate_ed25519_keypair() -> tuple[nacl.signing.SigningKey, bytes]:
    """Generates an ed25519 signing key and its 32-byte public key."""
    signing_key = nacl.signing.SigningKey.generate()
    return signing_key, bytes(signing_key.verify_key)


# --- Transaction signing (ECDSA) ---

def generate_key_pair() -> tuple[ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey]:
    """Generates an ECDSA private/public key pair (SECP256R1)."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_key = private_key.public_key()
    return private_key, public_key


def serialize_public_key(public_key: ec.EllipticCurvePublicKey) -> str:
    """Serializes a public key object into PEM format (string)."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')


def deserialize_public_key(pem_data: str) -> ec.EllipticCurvePublicKey:
    """Deserializes a public key from a PEM formatted string."""
    return serialization.load_pem_public_key(pem_data.encode('utf-8'))


def public_key_to_address(public_key_pem: str) -> bytes:
    """Derives a 20-byte account address from a public key PEM string."""
    public_key = deserialize_public_key(public_key_pem)
    der_bytes = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return generate_hash(der_bytes)[-20:]


def sign(private_key: ec.EllipticCurvePrivateKey, data: bytes) -> bytes:
    """Signs byte data using ECDSA with SHA256."""
    return private_key.sign(data, ec.ECDSA(hashes.SHA256()))


def verify_signature(public_key_pem: str, signature: bytes, data: bytes) -> bool:
    """Verifies an ECDSA/SHA256 signature."""
    try:
        public_key = deserialize_public_key(public_key_pem)
        public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
        return True
    except (InvalidSignature, ValueError):
        return False
