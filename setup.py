# setup.py
from setuptools import setup, find_namespace_packages

setup(
    name="risk_registry",
    version="0.1.0",
    packages=find_namespace_packages(include=["risk_registry", "risk_registry.*"]),
    python_requires=">=3.10",
    install_requires=[
        "msgpack",            # slot records, transaction signing data
        "PyNaCl",             # ed25519 keys
        "cryptography",       # ECDSA transaction signatures
        "pycryptodome",       # keccak-256
        "plyvel",             # LevelDB state store
        "prometheus_client",  # metrics
        "base58",             # key-based chain addresses
    ],
    extras_require={
        "test": ["pytest"],
    },
)
