"""Proof pipeline models.

Contains the toolchain's intermediate values (program, witness, proof), the
portable artifact handed to verifiers, and the per-request run record.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class CircuitSource:
    """Source files of one circuit project, keyed by relative path."""

    name: str
    files: dict[str, str]

    @classmethod
    def from_directory(cls, name: str, directory: Path) -> CircuitSource:
        files = {
            str(path.relative_to(directory)): path.read_text(encoding="utf-8")
            for path in sorted(directory.rglob("*"))
            if path.is_file()
        }
        return cls(name=name, files=files)


@dataclass(frozen=True)
class Program:
    """A compiled circuit.

    ``circuit_id`` identifies the exact compiled program; proofs are only
    meaningful together with it.
    """

    name: str
    circuit_id: str
    bytecode: bytes = field(repr=False)
    abi: dict[str, Any] = field(default_factory=dict, repr=False)
    source: CircuitSource | None = field(default=None, repr=False)


@dataclass(frozen=True)
class Witness:
    """Serialized witness produced by executing a program."""

    data: bytes = field(repr=False)


@dataclass(frozen=True)
class Proof:
    """Raw prover output. The bytes are opaque outside the toolchain."""

    proof_bytes: bytes = field(repr=False)
    public_inputs: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProofArtifact:
    """Portable result of a verified proof run."""

    proof_bytes: bytes = field(repr=False)
    public_inputs: tuple[str, ...]
    circuit_id: str
    generated_at: int  # epoch milliseconds

    def to_proof(self) -> Proof:
        return Proof(proof_bytes=self.proof_bytes, public_inputs=self.public_inputs)


class ProofStage(str, Enum):
    """Stages of one proof request, in the only order they may occur."""

    IDLE = "idle"
    CIRCUIT_READY = "circuit_ready"
    WITNESS_GENERATED = "witness_generated"
    PROVED = "proved"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass
class ProofRun:
    """Mutable record of one proof request as it moves through the stages."""

    owner: str
    circuit: str
    stage: ProofStage = ProofStage.IDLE
    history: list[tuple[ProofStage, float]] = field(default_factory=list)
    failure_kind: str | None = None
    circuit_id: str | None = None

    def advance(self, stage: ProofStage) -> None:
        self.stage = stage
        self.history.append((stage, time.time()))

    def fail(self, kind: str) -> None:
        self.failure_kind = kind
        self.advance(ProofStage.FAILED)

    def last_successful_stage(self) -> ProofStage:
        """Latest stage reached before any failure."""
        for stage, _ in reversed(self.history):
            if stage is not ProofStage.FAILED:
                return stage
        return ProofStage.IDLE
