"""Proving toolchain backed by the ``nargo`` and ``bb`` command-line tools.

The tools run as asyncio subprocesses, so the event loop stays free while
the prover works. Once started, a tool runs to completion or failure; a
caller that gives up only stops waiting for it.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from zkattest.proofs.inputs import ProofInputs
from zkattest.proofs.models import CircuitSource, Program, Proof, Witness
from zkattest.shared.errors import (
    ConstraintViolationError,
    InputShapeMismatchError,
    ToolchainUnavailableError,
)

logger = logging.getLogger(__name__)

_CONSTRAINT_FAILURE_RE = re.compile(
    r"(Failed assertion|Cannot satisfy constraint|assertion failed)", re.IGNORECASE
)
_INPUT_FAILURE_RE = re.compile(
    r"(Argument .* not found|Type .* mismatch|could not parse|InputParserError)",
    re.IGNORECASE,
)

FIELD_BYTES = 32


def render_prover_toml(inputs: ProofInputs) -> str:
    """Render validated inputs as a Prover.toml document."""
    lines = []
    for name, value in inputs.values.items():
        if isinstance(value, tuple):
            items = ", ".join(f'"{item}"' for item in value)
            lines.append(f"{name} = [{items}]")
        else:
            lines.append(f'{name} = "{value}"')
    return "\n".join(lines) + "\n"


class NargoToolchain:
    """Runs Noir circuits with nargo (compile/execute) and bb (prove/verify).

    Compilation happens once in ``workdir/<circuit>``. Every execute, prove
    and verify call then works in its own scratch copy of the compiled
    project, so concurrent requests never share witness or proof files.
    """

    def __init__(
        self,
        nargo_bin: str = "nargo",
        bb_bin: str = "bb",
        workdir: str | Path | None = None,
    ) -> None:
        """Initialize the toolchain adapter.

        Args:
            nargo_bin: Path or name of the nargo binary
            bb_bin: Path or name of the Barretenberg binary
            workdir: Scratch directory. Defaults to a fresh temp directory.
        """
        self.nargo_bin = nargo_bin
        self.bb_bin = bb_bin
        self.workdir = (
            Path(workdir) if workdir else Path(tempfile.mkdtemp(prefix="zkattest-"))
        )
        self._vk_lock = asyncio.Lock()

    # ================================
    # Toolchain operations
    # ================================

    async def compile(self, source: CircuitSource) -> Program:
        project = self.workdir / source.name
        _write_project(project, source)
        await self._run_checked(
            [self.nargo_bin, "compile", "--program-dir", str(project)], "compile"
        )

        compiled_path = project / "target" / f"{source.name}.json"
        try:
            compiled = json.loads(compiled_path.read_text(encoding="utf-8"))
            bytecode = base64.b64decode(compiled["bytecode"])
        except (OSError, KeyError, ValueError) as e:
            raise ToolchainUnavailableError(
                f"nargo produced no usable program for {source.name}: {e}"
            ) from e

        return Program(
            name=source.name,
            circuit_id=hashlib.sha256(bytecode).hexdigest(),
            bytecode=bytecode,
            abi=compiled.get("abi", {}),
            source=source,
        )

    async def execute(self, program: Program, inputs: ProofInputs) -> Witness:
        with self._scratch_project(program) as project:
            prover_toml = project / "Prover.toml"
            prover_toml.write_text(render_prover_toml(inputs), encoding="utf-8")

            returncode, _, stderr = await self._run(
                [self.nargo_bin, "execute", "--program-dir", str(project), "witness"]
            )
            if returncode != 0:
                if _CONSTRAINT_FAILURE_RE.search(stderr):
                    raise ConstraintViolationError(
                        f"Circuit {program.name} constraints not satisfied"
                    )
                if _INPUT_FAILURE_RE.search(stderr):
                    raise InputShapeMismatchError(
                        f"Inputs rejected by {program.name}: {stderr.strip()[:200]}"
                    )
                raise ToolchainUnavailableError(
                    f"nargo execute failed ({returncode}): {stderr.strip()[:200]}"
                )

            return Witness(data=(project / "target" / "witness.gz").read_bytes())

    async def prove(self, program: Program, witness: Witness) -> Proof:
        with self._scratch_project(program) as project:
            target = project / "target"
            witness_path = target / "witness.gz"
            witness_path.write_bytes(witness.data)

            await self._run_checked(
                [
                    self.bb_bin,
                    "prove",
                    "-b",
                    str(target / f"{program.name}.json"),
                    "-w",
                    str(witness_path),
                    "-o",
                    str(target),
                ],
                "prove",
            )

            proof_bytes = (target / "proof").read_bytes()
            inputs_path = target / "public_inputs"
            raw_inputs = inputs_path.read_bytes() if inputs_path.exists() else b""

        return Proof(proof_bytes=proof_bytes, public_inputs=_split_fields(raw_inputs))

    async def verify(self, program: Program, proof: Proof) -> bool:
        try:
            raw_inputs = _join_fields(proof.public_inputs)
        except (ValueError, OverflowError):
            logger.debug("Public inputs are not 32-byte hex field elements")
            return False

        vk_path = await self._ensure_vk(program)

        with tempfile.TemporaryDirectory(dir=self.workdir) as scratch:
            proof_path = Path(scratch) / "proof"
            inputs_path = Path(scratch) / "public_inputs"
            proof_path.write_bytes(proof.proof_bytes)
            inputs_path.write_bytes(raw_inputs)

            returncode, _, stderr = await self._run(
                [
                    self.bb_bin,
                    "verify",
                    "-k",
                    str(vk_path),
                    "-p",
                    str(proof_path),
                    "-i",
                    str(inputs_path),
                ]
            )

        if returncode != 0:
            logger.debug(f"bb verify rejected proof: {stderr.strip()[:200]}")
        return returncode == 0

    # ================================
    # Helpers
    # ================================

    async def _ensure_vk(self, program: Program) -> Path:
        """Write the verification key once per compiled program."""
        vk_dir = self.workdir / "vk" / program.circuit_id
        vk_path = vk_dir / "vk"

        async with self._vk_lock:
            if vk_path.exists():
                return vk_path

            with self._scratch_project(program) as project:
                vk_dir.mkdir(parents=True, exist_ok=True)
                await self._run_checked(
                    [
                        self.bb_bin,
                        "write_vk",
                        "-b",
                        str(project / "target" / f"{program.name}.json"),
                        "-o",
                        str(vk_dir),
                    ],
                    "write_vk",
                )
        return vk_path

    @contextmanager
    def _scratch_project(self, program: Program) -> Iterator[Path]:
        """Temporary copy of the compiled project for one tool invocation."""
        if program.source is None:
            raise ToolchainUnavailableError(f"No circuit source for {program.name}")

        self.workdir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.workdir) as scratch:
            project = Path(scratch) / program.name
            _write_project(project, program.source)

            target = project / "target"
            target.mkdir(parents=True, exist_ok=True)
            compiled = {
                "bytecode": base64.b64encode(program.bytecode).decode("ascii"),
                "abi": program.abi,
            }
            (target / f"{program.name}.json").write_text(json.dumps(compiled))
            yield project

    async def _run_checked(self, args: list[str], step: str) -> str:
        returncode, stdout, stderr = await self._run(args)
        if returncode != 0:
            raise ToolchainUnavailableError(
                f"{Path(args[0]).name} {step} failed ({returncode}): "
                f"{stderr.strip()[:200]}"
            )
        return stdout

    async def _run(self, args: list[str]) -> tuple[int, str, str]:
        logger.debug(f"Running {' '.join(args[:2])}")
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ToolchainUnavailableError(f"{args[0]} is not installed") from e

        stdout, stderr = await process.communicate()
        return (
            process.returncode,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )


def _write_project(project: Path, source: CircuitSource) -> None:
    for relative, content in source.files.items():
        path = project / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


def _split_fields(raw: bytes) -> tuple[str, ...]:
    """Split bb's concatenated 32-byte public inputs into 0x-hex strings."""
    return tuple(
        "0x" + raw[offset : offset + FIELD_BYTES].hex()
        for offset in range(0, len(raw), FIELD_BYTES)
    )


def _join_fields(public_inputs: tuple[str, ...]) -> bytes:
    return b"".join(
        int(value, 16).to_bytes(FIELD_BYTES, "big") for value in public_inputs
    )
