"""Circuits shipped with the package."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from zkattest.proofs.inputs import AGE_CHECK_LAYOUT, SIGNED_ACCOUNT_LAYOUT, InputLayout
from zkattest.proofs.models import CircuitSource

CIRCUITS_DIR = Path(__file__).parent / "noir"


@dataclass(frozen=True)
class CircuitDefinition:
    """A circuit project together with the input layout of its main function."""

    name: str
    layout: InputLayout
    directory: Path

    def load_source(self) -> CircuitSource:
        return CircuitSource.from_directory(self.name, self.directory)


AGE_CHECK = CircuitDefinition(
    name="age_check",
    layout=AGE_CHECK_LAYOUT,
    directory=CIRCUITS_DIR / "age_check",
)

SIGNED_ACCOUNT = CircuitDefinition(
    name="signed_account",
    layout=SIGNED_ACCOUNT_LAYOUT,
    directory=CIRCUITS_DIR / "signed_account",
)

BUILTIN_CIRCUITS = {circuit.name: circuit for circuit in (AGE_CHECK, SIGNED_ACCOUNT)}
