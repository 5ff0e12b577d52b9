"""Exception hierarchy for the attestation-to-proof pipeline.

Every error carries a stable ``kind`` so callers can tell user-fixable
conditions (re-authenticate, resubmit an artifact) from systemic ones
(provider outage, toolchain down) without parsing messages.
"""

from __future__ import annotations

from typing import Any


class ZkAttestError(Exception):
    """Base exception for all pipeline errors."""

    kind: str = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON error body used by the HTTP surface."""
        return {"error": self.kind, "message": self.message}


# ================================
# Sessions
# ================================


class SessionError(ZkAttestError):
    """Raised when a PKCE session cannot be used."""

    kind = "session_error"


class SessionNotFoundError(SessionError):
    """Raised when no session exists for the given state."""

    kind = "not_found"


class SessionAlreadyConsumedError(SessionError):
    """Raised when a session's verifier was already handed out."""

    kind = "already_consumed"


class SessionExpiredError(SessionError):
    """Raised when a session outlived its time-to-live before use."""

    kind = "expired"


# ================================
# Providers
# ================================


class ProviderError(ZkAttestError):
    """Raised when an identity provider interaction fails."""

    kind = "provider_error"


class ProviderRejectedError(ProviderError):
    """Raised when the provider answers a token request with an error.

    Carries the provider's own error code so the caller can decide whether
    restarting the whole login makes sense.
    """

    kind = "provider_rejected"

    def __init__(
        self,
        message: str,
        error_code: str = "unknown_error",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["provider_error"] = self.error_code
        return body


class ProviderNetworkError(ProviderError):
    """Raised when the provider could not be reached."""

    kind = "network_error"


class UnauthorizedError(ProviderError):
    """Raised when the provider rejects the access token (HTTP 401)."""

    kind = "unauthorized"


class UpstreamError(ProviderError):
    """Raised for any other non-2xx provider response."""

    kind = "upstream_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderConfigurationError(ProviderError):
    """Raised when a provider is unknown or lacks client credentials."""

    kind = "provider_misconfigured"


# ================================
# Attestations
# ================================


class AttestationError(ZkAttestError):
    """Raised when the authority fails to sign a payload."""

    kind = "signing_failure"


class AttestationVerificationError(AttestationError):
    """Raised when a wire-format attestation is malformed."""

    kind = "invalid_attestation"


# ================================
# Proof pipeline
# ================================


class PipelineError(ZkAttestError):
    """Raised when a proof request does not reach the Verified stage."""

    kind = "pipeline_error"
    is_negative_result = False


class InputShapeMismatchError(PipelineError):
    """Raised when inputs don't fit the circuit's declared layout."""

    kind = "input_shape_mismatch"


class ConstraintViolationError(PipelineError):
    """Raised when an assertion inside the circuit fails.

    This is a legitimate negative answer (the claim is false), not a
    pipeline fault.
    """

    kind = "constraint_violation"
    is_negative_result = True


class ToolchainUnavailableError(PipelineError):
    """Raised when the external proving toolchain cannot be run."""

    kind = "toolchain_unavailable"


class ProofTimeoutError(PipelineError):
    """Raised when the caller's deadline passes before a result."""

    kind = "timeout"


class AlreadyInProgressError(PipelineError):
    """Raised when the caller already has a proof run in flight."""

    kind = "already_in_progress"


class SelfVerificationError(PipelineError):
    """Raised when a freshly generated proof fails verification."""

    kind = "self_verification_failed"


# ================================
# Artifact storage
# ================================


class StorageError(ZkAttestError):
    """Raised when a proof artifact cannot be loaded."""

    kind = "storage_error"


class ArtifactNotFoundError(StorageError):
    """Raised when no artifact is stored under the handle."""

    kind = "not_found"


class CorruptArtifactError(StorageError):
    """Raised when stored or pasted artifact data fails shape validation."""

    kind = "corrupt"
