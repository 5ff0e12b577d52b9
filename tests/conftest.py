import asyncio
import hashlib
import json

import pytest

from zkattest.attestation.keys import EphemeralKeyProvider
from zkattest.attestation.signer import AttestationSigner
from zkattest.proofs.inputs import ProofInputs
from zkattest.proofs.models import CircuitSource, Program, Proof, Witness
from zkattest.shared.errors import ConstraintViolationError


class FakeToolchain:
    """In-process stand-in for nargo/bb.

    Enforces the age_check assertion (age >= min_age) during execute and
    signs proofs with a marker prefix the verifier checks for.
    """

    PROOF_PREFIX = b"fake-proof:"

    def __init__(self):
        self.compile_calls = 0
        self.execute_calls = 0
        self.prove_calls = 0
        self.verify_calls = 0

        self.compile_delay = 0.0
        self.prove_gate: asyncio.Event | None = None
        self.prove_started = asyncio.Event()
        self.prove_delay = 0.0
        self.verify_result: bool | None = None

    async def compile(self, source: CircuitSource) -> Program:
        self.compile_calls += 1
        await asyncio.sleep(self.compile_delay)
        bytecode = json.dumps(source.files, sort_keys=True).encode()
        return Program(
            name=source.name,
            circuit_id=hashlib.sha256(bytecode).hexdigest(),
            bytecode=bytecode,
            source=source,
        )

    async def execute(self, program: Program, inputs: ProofInputs) -> Witness:
        self.execute_calls += 1
        values = inputs.values
        if program.name == "age_check" and values["age"] < values["min_age"]:
            raise ConstraintViolationError("assertion age >= min_age failed")
        return Witness(data=json.dumps(values, sort_keys=True).encode())

    async def prove(self, program: Program, witness: Witness) -> Proof:
        self.prove_calls += 1
        self.prove_started.set()
        if self.prove_gate is not None:
            await self.prove_gate.wait()
        await asyncio.sleep(self.prove_delay)

        values = json.loads(witness.data)
        public = (f"0x{values['min_age']:064x}",) if "min_age" in values else ()
        return Proof(proof_bytes=self.PROOF_PREFIX + witness.data, public_inputs=public)

    async def verify(self, program: Program, proof: Proof) -> bool:
        self.verify_calls += 1
        if self.verify_result is not None:
            return self.verify_result
        return proof.proof_bytes.startswith(self.PROOF_PREFIX)


@pytest.fixture
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def signer() -> AttestationSigner:
    return AttestationSigner(EphemeralKeyProvider())
