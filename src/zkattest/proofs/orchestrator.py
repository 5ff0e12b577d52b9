"""Proof orchestration.

Drives one proof request through compile -> execute -> prove -> verify and
only hands out an artifact once the proof has verified against the program
that produced it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping

from zkattest.proofs.circuits import AGE_CHECK, CircuitDefinition
from zkattest.proofs.inputs import ProofInputs
from zkattest.proofs.models import (
    Program,
    Proof,
    ProofArtifact,
    ProofRun,
    ProofStage,
    Witness,
)
from zkattest.proofs.toolchain import ProvingToolchain
from zkattest.shared.errors import (
    AlreadyInProgressError,
    InputShapeMismatchError,
    PipelineError,
    ProofTimeoutError,
    SelfVerificationError,
    ToolchainUnavailableError,
)

logger = logging.getLogger(__name__)


class ProofOrchestrator:
    """Runs proof requests against an external proving toolchain.

    Shared state is limited to the compiled-program cache, written once per
    circuit and read thereafter, and the set of owners with a run in
    flight. At most one compilation runs at a time; concurrent requests
    wait for it instead of starting their own.
    """

    def __init__(
        self,
        toolchain: ProvingToolchain,
        default_timeout: float | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            toolchain: External compiler/executor/prover/verifier
            default_timeout: Per-request deadline in seconds, None for no limit
        """
        self._toolchain = toolchain
        self.default_timeout = default_timeout

        self._programs: dict[str, Program] = {}
        self._compile_lock = asyncio.Lock()
        self._in_flight: set[str] = set()
        self._runs: dict[str, ProofRun] = {}

    # ================================
    # Compilation cache
    # ================================

    async def get_program(self, circuit: CircuitDefinition) -> Program:
        """Return the compiled program, compiling on first use.

        Raises:
            ToolchainUnavailableError: If compilation fails
        """
        program = self._programs.get(circuit.name)
        if program is not None:
            return program

        async with self._compile_lock:
            # Another request may have finished compiling while we waited
            program = self._programs.get(circuit.name)
            if program is not None:
                return program

            logger.info(f"Compiling circuit {circuit.name}")
            try:
                program = await self._toolchain.compile(circuit.load_source())
            except PipelineError:
                raise
            except Exception as e:
                raise ToolchainUnavailableError(
                    f"Failed to compile circuit {circuit.name}: {e}"
                ) from e

            # Only a finished compilation is ever cached
            self._programs[circuit.name] = program
            logger.info(f"Compiled {circuit.name} as {program.circuit_id[:16]}...")
            return program

    # ================================
    # Proof generation
    # ================================

    def is_in_flight(self, owner: str) -> bool:
        """Check whether owner has a proof run pending."""
        return owner in self._in_flight

    def last_run(self, owner: str) -> ProofRun | None:
        """Return the most recent run record for owner."""
        return self._runs.get(owner)

    async def generate(
        self,
        owner: str,
        inputs: ProofInputs | Mapping[str, Any],
        circuit: CircuitDefinition = AGE_CHECK,
        timeout: float | None = None,
    ) -> ProofArtifact:
        """Produce a verified proof artifact.

        Args:
            owner: Session or user the request belongs to
            inputs: Validated inputs, or a raw mapping validated here
            circuit: Circuit to prove against
            timeout: Deadline in seconds, overriding the default

        Returns:
            ProofArtifact: Proof that already passed self-verification

        Raises:
            AlreadyInProgressError: If owner already has a run in flight
            InputShapeMismatchError: If inputs don't fit the circuit
            ConstraintViolationError: If the claim is false
            ToolchainUnavailableError: If the toolchain failed
            SelfVerificationError: If the new proof did not verify
            ProofTimeoutError: If the deadline passed first
        """
        # Checked and claimed before the first await, so no interleaving
        if owner in self._in_flight:
            raise AlreadyInProgressError(
                f"A proof request is already in progress for {owner}"
            )
        self._in_flight.add(owner)

        run = ProofRun(owner=owner, circuit=circuit.name)
        run.advance(ProofStage.IDLE)
        self._runs[owner] = run

        timeout = self.default_timeout if timeout is None else timeout
        try:
            proof_inputs = self._bind_inputs(inputs, circuit)
            return await asyncio.wait_for(
                self._run_pipeline(run, circuit, proof_inputs), timeout
            )
        except asyncio.TimeoutError as e:
            run.fail(ProofTimeoutError.kind)
            logger.warning(f"Proof request for {owner} timed out after {timeout}s")
            raise ProofTimeoutError(
                f"Proof generation did not finish within {timeout}s"
            ) from e
        except PipelineError as e:
            run.fail(e.kind)
            if e.is_negative_result:
                logger.info(f"Circuit {circuit.name} rejected the claim for {owner}")
            else:
                logger.warning(f"Proof request for {owner} failed: {e.kind}")
            raise
        finally:
            self._in_flight.discard(owner)

    def _bind_inputs(
        self, inputs: ProofInputs | Mapping[str, Any], circuit: CircuitDefinition
    ) -> ProofInputs:
        if isinstance(inputs, ProofInputs):
            if inputs.circuit != circuit.name:
                raise InputShapeMismatchError(
                    f"Inputs were built for {inputs.circuit}, not {circuit.name}"
                )
            # Re-check so hand-built ProofInputs can't skip validation
            return circuit.layout.bind(circuit.name, inputs.values)
        return circuit.layout.bind(circuit.name, inputs)

    async def _run_pipeline(
        self, run: ProofRun, circuit: CircuitDefinition, inputs: ProofInputs
    ) -> ProofArtifact:
        program = await self.get_program(circuit)
        run.circuit_id = program.circuit_id
        run.advance(ProofStage.CIRCUIT_READY)

        witness = await self._execute(program, inputs)
        run.advance(ProofStage.WITNESS_GENERATED)

        logger.debug(f"Proving {circuit.name} for {run.owner}")
        try:
            proof = await self._toolchain.prove(program, witness)
        except PipelineError:
            raise
        except Exception as e:
            raise ToolchainUnavailableError(f"Prover failed: {e}") from e
        run.advance(ProofStage.PROVED)

        if not await self._verify(program, proof):
            raise SelfVerificationError(
                "Freshly generated proof failed verification"
            )
        run.advance(ProofStage.VERIFIED)

        logger.info(f"Verified {circuit.name} proof for {run.owner}")
        return ProofArtifact(
            proof_bytes=proof.proof_bytes,
            public_inputs=tuple(proof.public_inputs),
            circuit_id=program.circuit_id,
            generated_at=int(time.time() * 1000),
        )

    async def _execute(self, program: Program, inputs: ProofInputs) -> Witness:
        try:
            return await self._toolchain.execute(program, inputs)
        except PipelineError:
            raise
        except Exception as e:
            raise ToolchainUnavailableError(f"Witness execution failed: {e}") from e

    async def _verify(self, program: Program, proof: Proof) -> bool:
        try:
            return await self._toolchain.verify(program, proof)
        except PipelineError:
            raise
        except Exception as e:
            raise ToolchainUnavailableError(f"Verifier failed: {e}") from e

    # ================================
    # Independent verification
    # ================================

    async def verify_artifact(
        self, artifact: ProofArtifact, circuit: CircuitDefinition = AGE_CHECK
    ) -> bool:
        """Re-verify a stored or received artifact.

        Fails closed: an artifact produced by any program other than the
        current compilation of ``circuit`` is rejected without consulting
        the verifier.

        Raises:
            ToolchainUnavailableError: If the verifier can't be run
        """
        program = await self.get_program(circuit)

        if artifact.circuit_id != program.circuit_id:
            logger.warning(
                f"Artifact circuit {artifact.circuit_id[:16]}... does not match "
                f"{circuit.name} ({program.circuit_id[:16]}...)"
            )
            return False
        if not artifact.proof_bytes:
            return False

        return await self._verify(program, artifact.to_proof())
