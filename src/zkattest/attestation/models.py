"""Attestation models.

An attestation binds a provider resource to the authority's signature over
its canonical digest. The wire form matches what the HTTP surface returns:
hex strings for the digest and curve values, epoch milliseconds for
``issuedAt``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from zkattest.shared.errors import AttestationVerificationError


def to_hex32(value: int) -> str:
    """Lower-case hex of a 256-bit value, zero-padded to 32 bytes."""
    return f"{value:064x}"


@dataclass(frozen=True)
class CurvePoint:
    """Affine secp256k1 public key coordinates."""

    x: int
    y: int

    def to_bytes(self) -> tuple[bytes, bytes]:
        return self.x.to_bytes(32, "big"), self.y.to_bytes(32, "big")


@dataclass(frozen=True)
class Signature:
    """ECDSA signature scalars."""

    r: int
    s: int

    def to_bytes(self) -> bytes:
        """Fixed-width r || s encoding (64 bytes)."""
        return self.r.to_bytes(32, "big") + self.s.to_bytes(32, "big")


@dataclass(frozen=True)
class Attestation:
    """A provider payload signed by the attestation authority.

    Nothing here re-checks the signature on mutation: changing ``payload``
    simply makes verification fail, because verification recomputes the
    digest from the payload.
    """

    payload: dict[str, Any]
    serialization: str
    digest: bytes
    signature: Signature
    public_key: CurvePoint
    issued_at: int  # epoch milliseconds

    def to_wire(self) -> dict[str, Any]:
        return {
            "payload": self.payload,
            "serialization": self.serialization,
            "messageHash": self.digest.hex(),
            "signature": {
                "r": to_hex32(self.signature.r),
                "s": to_hex32(self.signature.s),
            },
            "publicKey": {
                "x": to_hex32(self.public_key.x),
                "y": to_hex32(self.public_key.y),
            },
            "issuedAt": self.issued_at,
        }

    @classmethod
    def from_wire(cls, data: Any) -> Attestation:
        """Parse the wire form.

        Raises:
            AttestationVerificationError: If the data is malformed
        """
        try:
            wire = AttestationWire.model_validate(data)
        except ValidationError as e:
            raise AttestationVerificationError(f"Malformed attestation: {e}") from e

        return cls(
            payload=wire.payload,
            serialization=wire.serialization,
            digest=bytes.fromhex(wire.message_hash),
            signature=Signature(r=int(wire.signature.r, 16), s=int(wire.signature.s, 16)),
            public_key=CurvePoint(
                x=int(wire.public_key.x, 16), y=int(wire.public_key.y, 16)
            ),
            issued_at=wire.issued_at,
        )


HexScalar = Annotated[str, Field(pattern=r"^[0-9a-fA-F]{1,64}$")]


class SignatureWire(BaseModel):
    r: HexScalar
    s: HexScalar


class PublicKeyWire(BaseModel):
    x: HexScalar
    y: HexScalar


class AttestationWire(BaseModel):
    """Validation schema for attestations received from outside."""

    model_config = ConfigDict(populate_by_name=True)

    payload: dict[str, Any]
    serialization: str
    message_hash: str = Field(alias="messageHash", pattern=r"^[0-9a-fA-F]{64}$")
    signature: SignatureWire
    public_key: PublicKeyWire = Field(alias="publicKey")
    issued_at: int = Field(alias="issuedAt", ge=0)
