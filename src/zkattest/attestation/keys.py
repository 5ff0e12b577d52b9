"""Signing key providers for the attestation authority.

The signer depends only on the KeyProvider protocol. Where the key comes
from (generated at startup, a PEM file mounted from a secret store) is a
deployment decision.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

logger = logging.getLogger(__name__)

CURVE = ec.SECP256K1()
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class KeyProvider(Protocol):
    """Supplies the authority's secp256k1 signing key."""

    @property
    def is_persistent(self) -> bool:
        """Whether the key survives an authority restart."""
        ...

    def private_key(self) -> ec.EllipticCurvePrivateKey:
        """Return the signing key."""
        ...


class EphemeralKeyProvider:
    """Generates a fresh key once, held for the life of the process.

    Signatures made with it can't be checked against the same public key
    after a restart. Suitable for tests and demos only.
    """

    is_persistent = False

    def __init__(self) -> None:
        self._key = ec.generate_private_key(CURVE)
        logger.warning(
            "Using an ephemeral attestation key; signatures will not verify "
            "against a restarted authority"
        )

    def private_key(self) -> ec.EllipticCurvePrivateKey:
        return self._key


class PemKeyProvider:
    """Loads a provisioned secp256k1 key from PEM data."""

    is_persistent = True

    def __init__(self, pem: bytes, password: bytes | None = None) -> None:
        key = serialization.load_pem_private_key(pem, password=password)
        if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(
            key.curve, ec.SECP256K1
        ):
            raise ValueError("Attestation key must be a secp256k1 EC private key")
        self._key = key

    @classmethod
    def from_file(cls, path: str | Path, password: bytes | None = None) -> PemKeyProvider:
        logger.info(f"Loading attestation key from {path}")
        return cls(Path(path).read_bytes(), password=password)

    def private_key(self) -> ec.EllipticCurvePrivateKey:
        return self._key


def generate_pem(password: bytes | None = None) -> bytes:
    """Create a new secp256k1 key in PKCS#8 PEM form for provisioning."""
    encryption: serialization.KeySerializationEncryption = (
        serialization.BestAvailableEncryption(password)
        if password
        else serialization.NoEncryption()
    )
    return ec.generate_private_key(CURVE).private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )
