"""Proof artifact persistence.

Artifacts are stored as JSON with ``proofBytes`` as a plain array of byte
values so they survive storage and copy/paste between parties unchanged.
Anything read back, or pasted in, is shape-checked before it gets near a
verifier.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from zkattest.proofs.models import ProofArtifact
from zkattest.shared.errors import ArtifactNotFoundError, CorruptArtifactError
from zkattest.shared.storage import InMemoryStorage, StoragePort

logger = logging.getLogger(__name__)

HANDLE_PREFIX = "proof:"

ByteValue = Annotated[StrictInt, Field(ge=0, le=255)]


class ArtifactWire(BaseModel):
    """JSON shape of a persisted artifact."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    proof_bytes: list[ByteValue] = Field(alias="proofBytes", min_length=1)
    public_inputs: list[StrictStr] = Field(alias="publicInputs", default_factory=list)
    circuit_id: StrictStr = Field(alias="circuitId", pattern=r"^[0-9a-f]{64}$")
    timestamp: StrictInt = Field(ge=0)


def serialize_artifact(artifact: ProofArtifact) -> str:
    """Encode an artifact as portable JSON."""
    return json.dumps(
        {
            "proofBytes": list(artifact.proof_bytes),
            "publicInputs": list(artifact.public_inputs),
            "circuitId": artifact.circuit_id,
            "timestamp": artifact.generated_at,
        }
    )


def parse_artifact(text: str) -> ProofArtifact:
    """Decode and validate artifact JSON, e.g. pasted by another party.

    Raises:
        CorruptArtifactError: If the text isn't a well-formed artifact
    """
    try:
        data: Any = json.loads(text)
    except (TypeError, ValueError, RecursionError) as e:
        raise CorruptArtifactError(f"Artifact is not valid JSON: {e}") from e

    try:
        wire = ArtifactWire.model_validate(data)
    except ValidationError as e:
        raise CorruptArtifactError(
            f"Artifact failed validation: {e.error_count()} problem(s)"
        ) from e

    return ProofArtifact(
        proof_bytes=bytes(wire.proof_bytes),
        public_inputs=tuple(wire.public_inputs),
        circuit_id=wire.circuit_id,
        generated_at=wire.timestamp,
    )


class ProofArtifactStore:
    """Saves and loads artifacts through a storage port."""

    def __init__(self, storage: StoragePort | None = None) -> None:
        self._storage = storage if storage is not None else InMemoryStorage()

    def save(self, artifact: ProofArtifact) -> str:
        """Persist an artifact.

        Returns:
            Handle for loading it back
        """
        handle = f"{HANDLE_PREFIX}{uuid.uuid4().hex}"
        self._storage.set(handle, serialize_artifact(artifact))
        logger.debug(f"Saved artifact {handle} for circuit {artifact.circuit_id[:16]}...")
        return handle

    def load(self, handle: str) -> ProofArtifact:
        """Load an artifact by handle.

        Raises:
            ArtifactNotFoundError: If nothing is stored under handle
            CorruptArtifactError: If the stored data fails validation
        """
        raw = self._storage.get(handle)
        if raw is None:
            raise ArtifactNotFoundError(f"No artifact stored under {handle}")

        try:
            return parse_artifact(raw)
        except CorruptArtifactError:
            logger.warning(f"Stored artifact {handle} is corrupt")
            raise

    def remove(self, handle: str) -> bool:
        return self._storage.remove(handle)

    def list_handles(self) -> list[str]:
        return self._storage.keys(HANDLE_PREFIX)
