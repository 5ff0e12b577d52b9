"""Interface to the external proving toolchain.

The constraint compiler, witness executor and proof backend are external
collaborators. Everything the pipeline needs from them is this protocol.
"""

from __future__ import annotations

from typing import Protocol

from zkattest.proofs.inputs import ProofInputs
from zkattest.proofs.models import CircuitSource, Program, Proof, Witness


class ProvingToolchain(Protocol):
    """Compile, execute, prove, verify.

    Implementations raise ConstraintViolationError when a circuit assertion
    fails during execute, InputShapeMismatchError when inputs don't fit the
    program's ABI, and ToolchainUnavailableError when the backend can't be
    run at all.
    """

    async def compile(self, source: CircuitSource) -> Program:
        ...

    async def execute(self, program: Program, inputs: ProofInputs) -> Witness:
        ...

    async def prove(self, program: Program, witness: Witness) -> Proof:
        ...

    async def verify(self, program: Program, proof: Proof) -> bool:
        ...
