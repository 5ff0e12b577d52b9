"""Attestation signing and verification.

The authority canonicalizes a provider payload, hashes it with SHA-256 and
signs the digest with its secp256k1 key. Anyone holding the public key can
check that a payload is exactly what the authority saw.
"""

from __future__ import annotations

import copy
import logging
import secrets
import time
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from zkattest.attestation.canonical import canonicalize, digest
from zkattest.attestation.keys import CURVE, CURVE_ORDER, KeyProvider
from zkattest.attestation.models import Attestation, CurvePoint, Signature
from zkattest.shared.errors import AttestationError

logger = logging.getLogger(__name__)

_PREHASHED_SHA256 = ec.ECDSA(Prehashed(hashes.SHA256()))


class AttestationSigner:
    """Signs provider payloads on behalf of the attestation authority.

    Constructed once at startup with a key provider and passed to whoever
    needs it; there is no module-level instance.
    """

    def __init__(self, key_provider: KeyProvider) -> None:
        self._key_provider = key_provider
        numbers = key_provider.private_key().public_key().public_numbers()
        self.public_key = CurvePoint(x=numbers.x, y=numbers.y)

    @property
    def is_persistent(self) -> bool:
        """Whether signatures stay verifiable across authority restarts."""
        return self._key_provider.is_persistent

    def sign(self, payload: dict[str, Any]) -> Attestation:
        """Sign a provider payload.

        Args:
            payload: Exact resource object returned by the provider

        Returns:
            Attestation over the payload's canonical digest

        Raises:
            AttestationError: If the payload can't be serialized or signed
        """
        if not isinstance(payload, dict):
            raise AttestationError("Attested payload must be a JSON object")

        try:
            serialization = canonicalize(payload)
        except (TypeError, ValueError) as e:
            raise AttestationError(f"Payload is not serializable: {e}") from e

        message_hash = digest(serialization)

        try:
            der = self._key_provider.private_key().sign(message_hash, _PREHASHED_SHA256)
        except Exception as e:
            raise AttestationError(f"Failed to sign payload: {e}") from e

        r, s = decode_dss_signature(der)
        # Low-S form; in-circuit ECDSA verifiers reject the high-S twin
        if s > CURVE_ORDER // 2:
            s = CURVE_ORDER - s

        attestation = Attestation(
            payload=copy.deepcopy(payload),
            serialization=serialization,
            digest=message_hash,
            signature=Signature(r=r, s=s),
            public_key=self.public_key,
            issued_at=int(time.time() * 1000),
        )

        logger.info(f"Signed attestation {message_hash.hex()[:16]}...")
        return attestation


def verify_signature(
    message_hash: bytes, signature: Signature, public_key: CurvePoint
) -> bool:
    """Check an ECDSA signature over a SHA-256 digest."""
    try:
        numbers = ec.EllipticCurvePublicNumbers(public_key.x, public_key.y, CURVE)
        numbers.public_key().verify(
            encode_dss_signature(signature.r, signature.s),
            message_hash,
            _PREHASHED_SHA256,
        )
    except (InvalidSignature, ValueError):
        return False
    return True


def verify_attestation(
    attestation: Attestation, trusted_key: CurvePoint | None = None
) -> bool:
    """Verify an attestation end to end.

    The digest is recomputed from the payload, so editing the payload fails
    verification even when the stored serialization and digest are left
    untouched.

    Args:
        attestation: Attestation to check
        trusted_key: Authority key to require. Without it, the key embedded
            in the attestation is used, which only proves integrity.
    """
    if trusted_key is not None and attestation.public_key != trusted_key:
        logger.warning("Attestation signed by an untrusted key")
        return False

    try:
        serialization = canonicalize(attestation.payload)
    except (TypeError, ValueError):
        return False

    message_hash = digest(serialization)
    if not secrets.compare_digest(message_hash, attestation.digest):
        logger.warning("Attestation payload does not match its digest")
        return False
    if serialization != attestation.serialization:
        return False

    return verify_signature(message_hash, attestation.signature, attestation.public_key)
