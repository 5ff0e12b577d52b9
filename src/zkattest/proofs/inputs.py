"""Typed circuit inputs.

Constraint systems silently wrap (or reject much later) values that don't
fit a declared width, so every value is range-checked here, before any
toolchain call, and out-of-range data is rejected rather than truncated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from zkattest.attestation.canonical import canonicalize, digest
from zkattest.attestation.models import Attestation
from zkattest.shared.errors import InputShapeMismatchError

# Scalar field of BN254, the curve the proof backend works over
FIELD_MODULUS = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)

InputValue = int | tuple[int, ...]


@dataclass(frozen=True)
class InputSpec:
    """One circuit parameter.

    Scalars declare ``bits`` (unsigned width) or ``kind="field"``; byte
    arrays declare ``length`` and hold u8 elements.
    """

    name: str
    kind: Literal["uint", "field", "bytes"] = "uint"
    bits: int = 0
    length: int = 0
    public: bool = False

    def validate(self, value: Any) -> InputValue:
        """Check value fits this parameter and normalize it.

        Raises:
            InputShapeMismatchError: If the value has the wrong type or range
        """
        if self.kind == "bytes":
            return self._validate_bytes(value)

        if isinstance(value, bool) or not isinstance(value, int):
            raise InputShapeMismatchError(
                f"{self.name} must be an integer, got {type(value).__name__}"
            )

        upper = FIELD_MODULUS if self.kind == "field" else 1 << self.bits
        if not 0 <= value < upper:
            width = "field" if self.kind == "field" else f"u{self.bits}"
            raise InputShapeMismatchError(
                f"{self.name}={value} is outside the range of {width}"
            )
        return value

    def _validate_bytes(self, value: Any) -> tuple[int, ...]:
        if isinstance(value, (bytes, bytearray)):
            items: Sequence[Any] = list(value)
        elif isinstance(value, (list, tuple)):
            items = value
        else:
            raise InputShapeMismatchError(
                f"{self.name} must be a byte array, got {type(value).__name__}"
            )

        if len(items) != self.length:
            raise InputShapeMismatchError(
                f"{self.name} must hold exactly {self.length} bytes, got {len(items)}"
            )
        for item in items:
            if isinstance(item, bool) or not isinstance(item, int) or not 0 <= item < 256:
                raise InputShapeMismatchError(f"{self.name} holds a non-byte value")
        return tuple(items)


@dataclass(frozen=True)
class InputLayout:
    """Ordered parameter list of a circuit's main function."""

    specs: tuple[InputSpec, ...]

    @property
    def names(self) -> list[str]:
        return [spec.name for spec in self.specs]

    def bind(self, circuit: str, values: Mapping[str, Any]) -> ProofInputs:
        """Validate a name -> value mapping against this layout.

        Raises:
            InputShapeMismatchError: On missing, unexpected or out-of-range values
        """
        missing = [name for name in self.names if name not in values]
        if missing:
            raise InputShapeMismatchError(f"Missing circuit inputs: {missing}")

        unexpected = sorted(set(values) - set(self.names))
        if unexpected:
            raise InputShapeMismatchError(f"Unexpected circuit inputs: {unexpected}")

        bound = {spec.name: spec.validate(values[spec.name]) for spec in self.specs}
        return ProofInputs(circuit=circuit, values=bound)


@dataclass(frozen=True)
class ProofInputs:
    """Circuit-ready values, already validated against a layout."""

    circuit: str
    values: dict[str, InputValue] = field(default_factory=dict)


AGE_CHECK_LAYOUT = InputLayout(
    specs=(
        InputSpec("age", bits=8),
        InputSpec("min_age", bits=8, public=True),
    )
)

# Longest canonical payload the signed_account circuit hashes
MAX_MESSAGE_LEN = 2048

SIGNED_ACCOUNT_LAYOUT = InputLayout(
    specs=(
        InputSpec("message", kind="bytes", length=MAX_MESSAGE_LEN),
        InputSpec("message_len", bits=32),
        InputSpec("year_offset", bits=32),
        InputSpec("signature", kind="bytes", length=64),
        InputSpec("pub_key_x", kind="bytes", length=32, public=True),
        InputSpec("pub_key_y", kind="bytes", length=32, public=True),
        InputSpec("max_year", bits=16, public=True),
    )
)

# A quote inside a JSON string is escaped, so `{"` or `,"` only opens a key
_CREATED_AT_RE = re.compile(rb'[{,]"created_at":"(\d{4})-')


def age_inputs(age: Any, min_age: Any = 18) -> ProofInputs:
    """Inputs for proving ``age >= min_age`` without revealing age."""
    return AGE_CHECK_LAYOUT.bind("age_check", {"age": age, "min_age": min_age})


def attestation_inputs(attestation: Attestation, max_year: int) -> ProofInputs:
    """Inputs for proving an attested account was created by ``max_year``.

    The circuit receives the canonical payload itself, hashes it and checks
    the authority signature over that hash, then reads the year at
    ``year_offset``. The payload never leaves the prover.

    Raises:
        InputShapeMismatchError: If the payload has no usable created_at,
            doesn't match the signed digest or is too long for the circuit
    """
    serialization = canonicalize(attestation.payload)
    if digest(serialization) != attestation.digest:
        raise InputShapeMismatchError("Attestation digest does not match its payload")

    message = serialization.encode("utf-8")
    if len(message) > MAX_MESSAGE_LEN:
        raise InputShapeMismatchError(
            f"Attested payload is {len(message)} bytes; the circuit takes at most "
            f"{MAX_MESSAGE_LEN}"
        )

    match = _CREATED_AT_RE.search(message)
    if match is None:
        raise InputShapeMismatchError(
            "Attested payload has no created_at date (YYYY-MM-DD...)"
        )

    pub_key_x, pub_key_y = attestation.public_key.to_bytes()
    return SIGNED_ACCOUNT_LAYOUT.bind(
        "signed_account",
        {
            "message": message.ljust(MAX_MESSAGE_LEN, b"\x00"),
            "message_len": len(message),
            "year_offset": match.start(1),
            "signature": attestation.signature.to_bytes(),
            "pub_key_x": pub_key_x,
            "pub_key_y": pub_key_y,
            "max_year": max_year,
        },
    )
