"""Tests for the proof pipeline state machine.

Covers:
- Age threshold claims that hold and that don't
- Single in-flight run per owner
- Compile-once caching under concurrency
- Deadlines, self-verification and toolchain failures
- Independent re-verification of artifacts
"""

import asyncio
import dataclasses

import pytest

from zkattest.proofs.circuits import AGE_CHECK, SIGNED_ACCOUNT
from zkattest.proofs.inputs import ProofInputs, age_inputs
from zkattest.proofs.models import ProofStage
from zkattest.proofs.orchestrator import ProofOrchestrator
from zkattest.shared.errors import (
    AlreadyInProgressError,
    ConstraintViolationError,
    InputShapeMismatchError,
    ProofTimeoutError,
    SelfVerificationError,
    ToolchainUnavailableError,
)


class TestGenerate:
    async def test_age_above_threshold_is_verified(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)

        # Act
        artifact = await orchestrator.generate("session-1", age_inputs(25))

        # Assert
        run = orchestrator.last_run("session-1")
        assert run.stage is ProofStage.VERIFIED
        assert [stage for stage, _ in run.history] == [
            ProofStage.IDLE,
            ProofStage.CIRCUIT_READY,
            ProofStage.WITNESS_GENERATED,
            ProofStage.PROVED,
            ProofStage.VERIFIED,
        ]
        assert artifact.proof_bytes
        assert artifact.circuit_id == run.circuit_id
        assert artifact.public_inputs == (f"0x{18:064x}",)
        assert artifact.generated_at > 0
        assert toolchain.verify_calls == 1

    async def test_age_below_threshold_is_constraint_violation(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)

        # Act & Assert
        with pytest.raises(ConstraintViolationError) as exc_info:
            await orchestrator.generate("session-1", age_inputs(10))

        assert exc_info.value.is_negative_result is True
        run = orchestrator.last_run("session-1")
        assert run.stage is ProofStage.FAILED
        assert run.failure_kind == "constraint_violation"
        assert run.last_successful_stage() is ProofStage.CIRCUIT_READY
        assert toolchain.prove_calls == 0

    async def test_raw_mapping_is_validated_before_execution(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)

        # Act & Assert
        with pytest.raises(InputShapeMismatchError) as exc_info:
            await orchestrator.generate("session-1", {"age": 256, "min_age": 18})

        assert exc_info.value.is_negative_result is False
        assert toolchain.execute_calls == 0
        assert orchestrator.last_run("session-1").failure_kind == "input_shape_mismatch"

    async def test_hand_built_inputs_are_revalidated(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)
        bogus = ProofInputs(circuit="age_check", values={"age": 1000, "min_age": 18})

        # Act & Assert
        with pytest.raises(InputShapeMismatchError):
            await orchestrator.generate("session-1", bogus)
        assert toolchain.execute_calls == 0

    async def test_inputs_for_another_circuit_are_rejected(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)

        # Act & Assert
        with pytest.raises(InputShapeMismatchError):
            await orchestrator.generate(
                "session-1", age_inputs(25), circuit=SIGNED_ACCOUNT
            )

    async def test_failed_self_verification_is_reported(self, toolchain):
        # Arrange
        toolchain.verify_result = False
        orchestrator = ProofOrchestrator(toolchain)

        # Act & Assert
        with pytest.raises(SelfVerificationError):
            await orchestrator.generate("session-1", age_inputs(25))
        assert orchestrator.last_run("session-1").last_successful_stage() is ProofStage.PROVED

    async def test_unexpected_prover_failure_is_toolchain_unavailable(self, toolchain):
        # Arrange
        async def broken_prove(program, witness):
            raise RuntimeError("bb crashed")

        toolchain.prove = broken_prove
        orchestrator = ProofOrchestrator(toolchain)

        # Act & Assert
        with pytest.raises(ToolchainUnavailableError) as exc_info:
            await orchestrator.generate("session-1", age_inputs(25))
        assert "bb crashed" in exc_info.value.message

    async def test_deadline_raises_timeout_and_frees_owner(self, toolchain):
        # Arrange
        toolchain.prove_delay = 1.0
        orchestrator = ProofOrchestrator(toolchain, default_timeout=0.05)

        # Act & Assert
        with pytest.raises(ProofTimeoutError) as exc_info:
            await orchestrator.generate("session-1", age_inputs(25))

        assert exc_info.value.kind == "timeout"
        assert not orchestrator.is_in_flight("session-1")
        assert orchestrator.last_run("session-1").failure_kind == "timeout"


class TestConcurrency:
    async def test_second_request_for_same_owner_is_rejected(self, toolchain):
        # Arrange
        toolchain.prove_gate = asyncio.Event()
        orchestrator = ProofOrchestrator(toolchain)
        first = asyncio.create_task(orchestrator.generate("session-1", age_inputs(25)))
        await toolchain.prove_started.wait()

        # Act & Assert
        assert orchestrator.is_in_flight("session-1")
        with pytest.raises(AlreadyInProgressError) as exc_info:
            await orchestrator.generate("session-1", age_inputs(30))
        assert exc_info.value.kind == "already_in_progress"

        # The first run is unaffected
        toolchain.prove_gate.set()
        artifact = await first
        assert artifact.proof_bytes
        assert not orchestrator.is_in_flight("session-1")

    async def test_different_owners_run_concurrently(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)

        # Act
        artifacts = await asyncio.gather(
            orchestrator.generate("alice", age_inputs(25)),
            orchestrator.generate("bob", age_inputs(40)),
        )

        # Assert
        assert len(artifacts) == 2
        assert artifacts[0].proof_bytes != artifacts[1].proof_bytes

    async def test_concurrent_requests_compile_once(self, toolchain):
        # Arrange
        toolchain.compile_delay = 0.02
        orchestrator = ProofOrchestrator(toolchain)

        # Act
        await asyncio.gather(
            *(orchestrator.generate(f"owner-{n}", age_inputs(20 + n)) for n in range(5))
        )

        # Assert
        assert toolchain.compile_calls == 1

    async def test_failed_compile_is_not_cached(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)
        original_compile = toolchain.compile
        calls = []

        async def flaky_compile(source):
            calls.append(source.name)
            if len(calls) == 1:
                raise OSError("disk full")
            return await original_compile(source)

        toolchain.compile = flaky_compile

        # Act
        with pytest.raises(ToolchainUnavailableError):
            await orchestrator.get_program(AGE_CHECK)
        program = await orchestrator.get_program(AGE_CHECK)

        # Assert
        assert program.name == "age_check"
        assert len(calls) == 2


class TestVerifyArtifact:
    async def test_fresh_artifact_verifies(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)
        artifact = await orchestrator.generate("session-1", age_inputs(25))

        # Act & Assert
        assert await orchestrator.verify_artifact(artifact) is True

    async def test_artifact_from_other_program_fails_closed(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)
        artifact = await orchestrator.generate("session-1", age_inputs(25))
        verify_calls = toolchain.verify_calls

        # Act
        foreign = dataclasses.replace(artifact, circuit_id="0" * 64)

        # Assert
        assert await orchestrator.verify_artifact(foreign) is False
        assert toolchain.verify_calls == verify_calls

    async def test_tampered_proof_bytes_fail(self, toolchain):
        # Arrange
        orchestrator = ProofOrchestrator(toolchain)
        artifact = await orchestrator.generate("session-1", age_inputs(25))

        # Act
        tampered = dataclasses.replace(artifact, proof_bytes=b"garbage")

        # Assert
        assert await orchestrator.verify_artifact(tampered) is False
